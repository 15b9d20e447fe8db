"""Dependencies de autenticación para FastAPI"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from shared.auth.jwt_handler import decode_token, get_role
from shared.core.config import settings
from shared.auth.identity import ValidatorIdentity


security = HTTPBearer()


async def get_current_validator(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> ValidatorIdentity:
    '''
    Identidad del validador desde el token JWT.

    Solo autentica: la exigencia de rol la decide la política de validación.
    '''
    payload = decode_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido o expirado',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido: falta user_id',
        )

    return ValidatorIdentity(
        validator_id=str(user_id),
        role=get_role(payload),
        name=payload.get('name'),
    )


async def get_current_log_viewer(
    current_validator: ValidatorIdentity = Depends(get_current_validator)
) -> ValidatorIdentity:
    '''Verificar que el usuario pueda consultar registros de validación'''
    if (current_validator.role or '').lower() not in settings.authorized_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Se requieren permisos de validador o administrador'
        )
    return current_validator
