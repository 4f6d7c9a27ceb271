from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from strawberry.fastapi import BaseContext

from fittrack.auth.jwt import verify_token
from fittrack.core.logging_config import get_logger
from fittrack.crud.sessionCrud import verify_session
from fittrack.crud.usersCrud import get_user_by_id
from fittrack.db.postgresql import get_db
from fittrack.models import User

logger = get_logger("graphql.context")


@dataclass
class Context(BaseContext):
    db: AsyncSession
    request: Request
    response: Response
    user: Optional[User] = None


def _access_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return request.headers.get("x-access-token")


async def build_context(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> Context:
    user = None
    access_token = _access_token(request)

    if access_token:
        payload = verify_token(access_token)
        if payload:
            session_id = payload.get("session_id")
            if session_id and not await verify_session(db, session_id):
                logger.info(f"GraphQL request with revoked session {session_id}")
            else:
                candidate = await get_user_by_id(db, payload.get("user_id"))
                if candidate and candidate.is_active:
                    user = candidate

    return Context(db=db, request=request, response=response, user=user)
