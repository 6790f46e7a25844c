#!/usr/bin/env python3
"""
Conversation Simulator — chat with a configured agent from the terminal.

Seeds the agents listed under `agents:` in settings.yaml into the
configured store, then feeds every line you type to the engine.

Usage:
    python scripts/simulate_conversation.py                       # interactive
    python scripts/simulate_conversation.py --channel whatsapp
    python scripts/simulate_conversation.py -m "preciso de suporte" -m "1"
    python scripts/simulate_conversation.py --config config/settings.yaml
"""
import argparse
import asyncio
import os
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()


async def seed_agents(store, settings) -> int:
    from models.schemas import Agent

    seeded = 0
    for raw in settings.agents:
        agent = Agent.model_validate(raw)
        if await store.get_agent(agent.tenant_id, agent.id) is None:
            await store.create_agent(agent)
            seeded += 1
    return seeded


def print_response(response) -> None:
    print(f"\nagent> {response.message}")
    for option in response.menu_options:
        print(f"   {option.id}. {option.text}")
    flags = []
    if response.action_executed:
        flags.append("action executed")
    if response.escalated:
        flags.append("escalated")
    if response.conversation_complete:
        flags.append("conversation complete")
    step = response.current_step.value if response.current_step else "-"
    print(f"   [step: {step}{' | ' + ', '.join(flags) if flags else ''}]")


async def run(args) -> None:
    from config.settings import load_settings
    from backend.executor import create_action_executor
    from core.analyzers import create_intent_analyzer
    from context.sweeper import ExpirySweeper
    from core.engine import ConversationalAgentEngine
    from database.store_factory import create_store
    from models.schemas import MessageContext

    settings = load_settings(args.config)
    store = create_store({
        "store_backend": settings.database.store_backend,
        "store_file_dir": settings.database.store_file_dir,
    })
    seeded = await seed_agents(store, settings)
    print(f"Seeded {seeded} agent(s) for {args.tenant}")

    executor = create_action_executor(settings.executor)
    engine = ConversationalAgentEngine(
        store=store,
        intent_analyzer=create_intent_analyzer(settings),
        action_executor=executor,
        config=settings.engine,
    )
    sweeper = ExpirySweeper(store, interval_s=settings.engine.sweep_interval_s)
    await sweeper.start()

    def make_context(content: str) -> MessageContext:
        return MessageContext(
            tenant_id=args.tenant,
            user_id=args.user,
            channel_id=args.channel_id or f"{args.channel}-{args.user}",
            channel_type=args.channel,
            content=content,
        )

    try:
        if args.message:
            for content in args.message:
                print(f"\nyou> {content}")
                print_response(await engine.process_message(make_context(content)))
            return

        print("Type a message (Ctrl-D or 'sair' to quit).")
        while True:
            try:
                content = input("\nyou> ").strip()
            except EOFError:
                break
            if content.lower() in ("sair", "exit", "quit"):
                break
            if not content:
                continue
            print_response(await engine.process_message(make_context(content)))
    finally:
        await sweeper.stop()
        if hasattr(executor, "close"):
            await executor.close()


def main():
    parser = argparse.ArgumentParser(description="Simulate a conversation with an agent")
    parser.add_argument("--config", default=None, help="Path to settings.yaml")
    parser.add_argument("--tenant", default="tenant-demo", help="Tenant id")
    parser.add_argument("--user", default="user-1", help="End-user id")
    parser.add_argument("--channel", default="chat", help="Channel type")
    parser.add_argument("--channel-id", default=None, help="Channel thread id")
    parser.add_argument("-m", "--message", action="append", help="Send these messages and exit")
    args = parser.parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
