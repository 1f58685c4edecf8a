"""Drive one generation session against a running server, answering questions from stdin."""
import asyncio
import json
import sys

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cardforge.schemas.api_messages import validate_payload

# Configuration
BASE_URL = "http://localhost:8000"
REQUEST = "Create a noir detective character in a rain-soaked 1940s city"

# Generation turns can take minutes
TIMEOUT = httpx.Timeout(600.0, connect=10.0)


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=2, max=30),
)
async def post(client: httpx.AsyncClient, path: str, payload: dict) -> dict:
    response = await client.post(f"{BASE_URL}{path}", json=payload)
    response.raise_for_status()
    return response.json()


async def simulate(request: str):
    ok, payload = validate_payload("start", {"request": request})
    if not ok:
        print(f"[Client] {payload}")
        return

    async with httpx.AsyncClient(timeout=TIMEOUT) as client:
        print("[Client] Starting generation...")
        result = await post(client, "/sessions", payload)
        session_id = result["session_id"]

        while result.get("needs_user_input"):
            print(f"\n[Agent] {result.get('message')}")
            answer = input("> ").strip() or "Surprise me."
            ok, body = validate_payload("continue", {"response": answer})
            if not ok:
                print(f"[Client] {body}")
                continue
            result = await post(client, f"/sessions/{session_id}/continue", body)

        print(f"\n[Server] status={result['status']} success={result['success']}")
        if result.get("error"):
            print(f"[Server] error: {result['error']}")

        export = (await client.get(f"{BASE_URL}/sessions/{session_id}/export")).json()
        print(json.dumps(export, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    asyncio.run(simulate(" ".join(sys.argv[1:]) or REQUEST))
