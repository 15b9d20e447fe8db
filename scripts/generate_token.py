#!/usr/bin/env python3
"""Script para generar tokens JWT de validadores de prueba"""
import sys
import os

# Agregar directorio raíz al path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shared.auth.jwt_handler import create_access_token  # noqa: E402


def generate_token(validator_id: str, name: str = None, role: str = "validator"):
    """Generar token JWT para un validador"""
    return create_access_token({
        "sub": validator_id,
        "name": name or validator_id,
        "app_metadata": {"role": role},
    })


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Generar token JWT de validador")
    parser.add_argument("--validator-id", required=True, help="ID del validador")
    parser.add_argument("--name", help="Nombre visible del validador")
    parser.add_argument("--role", default="validator", choices=["validator", "admin", "scanner", "coordinator", "user"], help="Rol")

    args = parser.parse_args()

    token = generate_token(args.validator_id, args.name, args.role)
    print("\nToken generado:")
    print(token)
    print("\nPara usar en curl:")
    print(f'curl -X POST -H "Authorization: Bearer {token}" -H "Content-Type: application/json" '
          f'-d \'{{"qrCodeData": "..."}}\' http://localhost:8000/api/v1/tickets/validate')
    print()
