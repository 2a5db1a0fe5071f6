#!/usr/bin/env python3
"""
Demo script for the Lima Assistant API
Walks through a scripted field-rep conversation, then opens an interactive prompt
"""

import requests

BASE_URL = "http://localhost:8000"

SCRIPTED_TURNS = [
    "Сколько Парацетамола на складе?",
    "Найди аптеку Нурафшон",
    "Создай бронь в аптеку Нурафшон на Парацетамол — 5 упаковок",
    "Был в клинике МедиГранд, рассказал про Парацетамол",
    "С Ивановым",
    "Какие визиты на пятницу?",
    "Отмена",
]


def print_separator(title):
    """Print a separator with title"""
    print(f"\n{'='*60}")
    print(f"🎯 {title}")
    print(f"{'='*60}")


def send(message, session_id=None):
    """Send one utterance and print the reply; returns the session id to continue with"""
    payload = {"message": message, "sessionId": session_id}
    response = requests.post(f"{BASE_URL}/api/v1/assistant/query", json=payload, timeout=60)

    data = response.json()
    if response.status_code != 200:
        print(f"❌ Status: {response.status_code}")
    if data.get("functionName"):
        print(f"⚙️ Function: {data['functionName']}")
    print(f"🤖 {data.get('response', 'N/A')}")
    if data.get("turnState") == "awaiting_slot_fill":
        print("⏳ Waiting for more details")
    return data.get("sessionId") or session_id


def demo_health():
    print_separator("Health")
    response = requests.get(f"{BASE_URL}/health", timeout=10)
    health = response.json()
    print(f"Status: {health.get('status')}")
    print(f"Lima configured: {health.get('lima_configured')}")
    print(f"LLM configured: {health.get('llm_configured')}")


def demo_scripted_conversation():
    print_separator("Scripted Conversation")
    session_id = None
    for message in SCRIPTED_TURNS:
        print(f"\n👤 {message}")
        session_id = send(message, session_id)
        print("-" * 40)

    stats = requests.get(f"{BASE_URL}/api/v1/session/stats", timeout=10).json()
    print(f"\n📊 Sessions: {stats.get('total_sessions')} | Messages: {stats.get('total_messages')}")


def demo_repl():
    """Interactive loop against one session; empty line exits"""
    print_separator("Interactive Mode")
    print(requests.get(f"{BASE_URL}/api/v1/assistant/help", timeout=10).text)

    session_id = None
    while True:
        try:
            message = input("\n👤 ").strip()
            if not message:
                break
            session_id = send(message, session_id)
        except KeyboardInterrupt:
            break
        except requests.exceptions.RequestException as e:
            print(f"❌ Error: {e}")


def main():
    """Run all demos"""
    print("💊 Lima Assistant API - Feature Demo")

    try:
        demo_health()
        demo_scripted_conversation()
        demo_repl()
    except requests.exceptions.ConnectionError:
        print("❌ Error: Could not connect to API. Make sure the server is running on http://localhost:8000")


if __name__ == "__main__":
    main()
