#!/usr/bin/env python3
"""Simple functional test: one non-streaming completion through a running proxy."""

import json
import os
import sys

import httpx

ENDPOINT = os.getenv("HECK_PASSAGE_URL", "http://127.0.0.1:3000") + "/v1/chat/completions"
MODEL = "gpt-4o-mini"
PROMPT = "I am going to Paris, what should I see?"
API_KEY = os.getenv("API_MASTER_KEY", "1")
DEBUG = os.getenv("DEBUG") == "1"


def chat_once() -> None:
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {API_KEY}",
    }
    payload = {
        "messages": [{"role": "user", "content": PROMPT}],
        "model": MODEL,
    }

    resp = httpx.post(ENDPOINT, headers=headers, json=payload, timeout=600.0)
    resp.raise_for_status()

    data = resp.json()
    if DEBUG:
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return

    try:
        message = data["choices"][0]["message"]
        if message.get("reasoning_content"):
            print(f"[reasoning]\n{message['reasoning_content']}\n[/reasoning]\n")
        print(message["content"])
    except Exception:
        print(json.dumps(data, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    try:
        chat_once()
    except KeyboardInterrupt:
        print("\n[Interrupted]", file=sys.stderr)
