import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from leadscraper.settings import Settings, get_settings

security = HTTPBasic()

def operator_guard(
    creds: HTTPBasicCredentials = Depends(security),
    cfg: Settings = Depends(get_settings),
):
    """Single operator account protecting every /api route."""
    ok_user = secrets.compare_digest(creds.username.encode(), cfg.BASIC_USER.encode())
    ok_pass = secrets.compare_digest(creds.password.encode(), cfg.BASIC_PASS.encode())
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )
