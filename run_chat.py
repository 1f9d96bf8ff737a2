#!/usr/bin/env python3
"""
MCP Router - interactive console
Routes typed requests to the registered MCP servers. Type "exit" or "quit" to leave.
"""
import os
import sys

# Fix encoding issues on terminals with ASCII locale
os.environ.setdefault('PYTHONIOENCODING', 'utf-8')

import asyncio
import logging
from mcprouter.config import settings
from mcprouter.orchestrator import Orchestrator

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    logger.info("Starting MCP router chat...")
    logger.info(f"Python {sys.version}, oracle={settings.default_llm_provider}")

    orchestrator = await Orchestrator.create(settings)
    refreshed = await orchestrator.refresh_catalog()
    logger.info(f"Tool catalog refreshed for {refreshed} providers")

    session = orchestrator.new_session()
    print('Type "exit" or "quit" to end the session.')
    print('---------------------------------------------')

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "> ")).strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit"):
            break
        reply = await orchestrator.process_query(user_input, session)
        print(reply)
        print()

    print("Goodbye!")


if __name__ == "__main__":
    asyncio.run(main())
