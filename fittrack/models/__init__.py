# FitTrack models
from fittrack.models.userModel import User, TrainerAvailability
from fittrack.models.sessionModel import Session
from fittrack.models.classModel import ClassSession, Booking
from fittrack.models.attendanceModel import Attendance, AttendanceToken
from fittrack.models.membershipsModel import Plan, Subscription, Payment
from fittrack.models.notificationModel import Notification, AuditLog
from fittrack.models.contentModel import WorkoutPlan, DietPlan, MemberProgress

__all__ = [
    "User", "TrainerAvailability",
    "Session",
    "ClassSession", "Booking",
    "Attendance", "AttendanceToken",
    "Plan", "Subscription", "Payment",
    "Notification", "AuditLog",
    "WorkoutPlan", "DietPlan", "MemberProgress",
]
