"""
Cliente de consola para validar tickets en puerta.

Lee el texto de cada QR desde stdin (lectores USB que emulan teclado o ingreso
manual), lo envía a POST /api/v1/tickets/validate y muestra el resultado, que
se borra solo a los pocos segundos o al siguiente escaneo.

Uso:
    python scripts/scan_console.py --url http://localhost:8000 --token <JWT>
"""
import argparse
import asyncio
import os
import sys

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.ticket_validation.services.reset_timer import AutoResetTimer  # noqa: E402

DEFAULT_RESET_SECONDS = 5
SCAN_COOLDOWN_SECONDS = 1.5  # Solo UX: el servidor es quien garantiza la unicidad


def clear_result():
    print("\n" * 2 + "📷 Listo para escanear...")


def render(response: httpx.Response):
    data = response.json()
    if data.get("success"):
        ticket = data["ticket"]
        event = data["event"]
        print(f"✅ {data['message']}")
        print(f"   Ticket: {ticket['ticketName']} ({ticket['ticketId']})")
        print(f"   Evento: {event['title']} - {event.get('venue') or ''}")
        print(f"   Validaciones: {ticket.get('validationCount')}")
        return

    print(f"❌ {data.get('error', 'Error')}: {data.get('message', response.text)}")
    if data.get("usedAt"):
        print(f"   Usado: {data['usedAt']} por {data.get('validatedBy')}")
    if data.get("eventDate"):
        print(f"   Fecha del evento: {data['eventDate']}")


async def run(url: str, token: str, location: str, reset_seconds: float):
    timer = AutoResetTimer(reset_seconds, clear_result)
    loop = asyncio.get_running_loop()
    headers = {"Authorization": f"Bearer {token}"}

    async with httpx.AsyncClient(base_url=url, headers=headers, timeout=35.0) as client:
        clear_result()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            payload = line.strip()
            if not payload:
                continue

            timer.cancel()
            body = {"qrCodeData": payload, "scanMethod": "manual"}
            if location:
                body["location"] = location

            try:
                response = await client.post("/api/v1/tickets/validate", json=body)
                render(response)
            except httpx.HTTPError as e:
                print(f"⚠️  Error de conexión: {e}. Intenta nuevamente.")

            timer.schedule()
            await asyncio.sleep(SCAN_COOLDOWN_SECONDS)

    timer.cancel()


def main():
    parser = argparse.ArgumentParser(description="Validador de tickets por consola")
    parser.add_argument("--url", default=os.getenv("GATECHECK_URL", "http://localhost:8000"))
    parser.add_argument("--token", default=os.getenv("GATECHECK_TOKEN"))
    parser.add_argument("--location", default=os.getenv("GATECHECK_LOCATION", ""))
    parser.add_argument("--reset-seconds", type=float, default=DEFAULT_RESET_SECONDS)
    args = parser.parse_args()

    if not args.token:
        print("❌ Falta el token del validador (--token o GATECHECK_TOKEN)")
        sys.exit(1)

    try:
        asyncio.run(run(args.url, args.token, args.location, args.reset_seconds))
    except KeyboardInterrupt:
        print("\n👋 Validador detenido")


if __name__ == "__main__":
    main()
