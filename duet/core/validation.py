import os
from typing import Dict, Optional

import pydantic

from duet.core.errors import ValidationError
from duet.db import schemas as s

# Field -> message shown next to the offending input
_MESSAGES: Dict[str, str] = {
    "email": "Please enter a valid email",
    "password": "Password must be at least 6 characters",
    "display_name": "Please enter your name",
    "title": "Please enter a song title",
    "audio_filename": "Please select an audio file",
}


def _collect(model: type[pydantic.BaseModel], data: dict) -> pydantic.BaseModel:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        errors: Dict[str, str] = {}
        for err in e.errors():
            field = str(err["loc"][0]) if err.get("loc") else "__root__"
            errors.setdefault(field, _MESSAGES.get(field, err.get("msg", "invalid")))
        raise ValidationError(errors) from e


def validate_sign_in(email: str, password: str) -> s.SignInForm:
    return _collect(s.SignInForm, {"email": email.strip(), "password": password})


def validate_sign_up(email: str, password: str, display_name: Optional[str]) -> s.SignUpForm:
    return _collect(
        s.SignUpForm,
        {"email": email.strip(), "password": password, "display_name": (display_name or "").strip()},
    )


def default_title(filename: Optional[str]) -> str:
    """'Our Song.mp3' -> 'Our Song'"""
    if not filename:
        return ""
    return os.path.splitext(filename)[0]


def validate_upload(title: Optional[str], audio_filename: Optional[str]) -> s.UploadForm:
    title = (title or "").strip() or default_title(audio_filename).strip()
    return _collect(s.UploadForm, {"title": title, "audio_filename": audio_filename or ""})
