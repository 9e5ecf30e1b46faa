"""
=============================================================================
AUTH.PY — Identidad del Usuario
=============================================================================
El registro y el login (contraseñas, sesiones) viven en otro servicio.
Ese servicio entrega un JWT; aquí solo se verifica y se resuelve el
usuario con su zona horaria.

JWT (JSON Web Token):
  Flujo:
    1. El servicio de login genera el JWT con el id del usuario
    2. El cliente envía ese JWT en cada petición: "Authorization: Bearer <token>"
    3. La API verifica la firma y sabe quién es el usuario
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from database import get_db
from models import User

# ─────────────────────────────────────────────────────────────────────────────
# CONFIGURACIÓN
# ─────────────────────────────────────────────────────────────────────────────

SECRET_KEY = os.getenv("SECRET_KEY", "fitrooms-dev-secret-key-cambiar-en-produccion")
# SECRET_KEY → clave compartida con el servicio de login para firmar los JWT.

ALGORITHM = "HS256"

ACCESS_TOKEN_EXPIRE_DAYS = 30


# ─────────────────────────────────────────────────────────────────────────────
# TOKENS JWT
# ─────────────────────────────────────────────────────────────────────────────

def create_access_token(user_id: int, username: str) -> str:
    """
    Crea un token JWT con el ID y el nombre de usuario.
    Lo usan el servicio de login y los tests.
    """
    expire = datetime.now(timezone.utc) + timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)
    to_encode = {
        "sub": str(user_id),
        "username": username,
        "exp": expire
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Datos del token, o None si es inválido o ha expirado"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCIA: OBTENER USUARIO ACTUAL
# ─────────────────────────────────────────────────────────────────────────────

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Extrae el usuario del token JWT.

      @app.get("/plans")
      def listar(user: User = Depends(get_current_user)):
          ...

    La zona horaria se lee del usuario en cada petición (no se guarda en el token).
    """
    payload = decode_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token inválido o expirado",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token sin identificador de usuario"
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Usuario no encontrado"
        )

    return user
