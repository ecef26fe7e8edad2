import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from scheduling.auth.dependencies import get_current_user_id
from scheduling.auth.jwt_handler import create_access_token, decode_access_token
from scheduling.core import config


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_round_trips_subject() -> None:
    token = create_access_token('user-42')

    assert decode_access_token(token)['sub'] == 'user-42'
    assert get_current_user_id(_bearer(token)) == 'user-42'


def test_expired_token_is_rejected() -> None:
    token = create_access_token('user-42', expires_minutes=-1)

    with pytest.raises(HTTPException) as exception_info:
        get_current_user_id(_bearer(token))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_token_without_subject_is_rejected() -> None:
    token = jwt.encode({'role': 'client'}, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        get_current_user_id(_bearer(token))

    assert exception_info.value.detail == 'Invalid token subject'
