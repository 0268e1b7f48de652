"""
Identity seam.

Sign-in happens at the upstream identity proxy, which forwards the stable
user id and profile fields as request headers. Every authenticated request
syncs the profile onto the user row.
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from . import crud, models
from .database import get_db
from .errors import NotAuthenticated


def get_current_user(
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_user_first_name: Optional[str] = Header(default=None),
    x_user_last_name: Optional[str] = Header(default=None),
    x_user_profile_image: Optional[str] = Header(default=None),
) -> models.User:
    if not x_user_id or not x_user_id.strip():
        raise NotAuthenticated()
    return crud.upsert_user(
        db,
        x_user_id.strip(),
        email=x_user_email,
        first_name=x_user_first_name,
        last_name=x_user_last_name,
        profile_image_url=x_user_profile_image,
    )
