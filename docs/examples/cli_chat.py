import asyncio
import os
from typing import Dict, List, Set

from dotenv import load_dotenv

from chat_stream_lib import BackendConfig, ChatSession, Message, MessageStore, StreamSettings, setup_logging

# Load environment variables
load_dotenv()


async def main() -> None:
    """
    Main function to run a streaming CLI chat.

    The backend is picked with CHAT_BACKEND (openai, deepseek, groq or gemini) and
    CHAT_MODEL. Messages are kept in the sqlite database named by CHAT_STREAM_DATABASE_PATH.
    """
    setup_logging()
    settings = StreamSettings.from_env()
    backend = os.getenv("CHAT_BACKEND", "openai")
    config = BackendConfig(
        vendor=backend,
        model_name=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
        system_prompt="You are a helpful assistant.",
    )

    store = MessageStore(settings.database_path)
    session = ChatSession(store, conversation_id="cli", settings=settings)

    check = await session.test_backend(config)
    if not check.success:
        print(f"Error: backend '{backend}' is not usable ({check.error.code}): {check.error.message}")
        await store.close()
        return

    for message in await session.view.load_initial():
        print(f"{message.role.capitalize()}: {message.content}")

    printed: Dict[str, int] = {}
    finished: Set[str] = set()

    def on_update(messages: List[Message]) -> None:
        assistant = messages[-1]
        # Late echoes of earlier replies
        if assistant.id in finished:
            return
        if assistant.status in ("sending", "streaming") and assistant.content == settings.placeholder_text:
            return
        print(assistant.content[printed.get(assistant.id, 0) :], end="", flush=True)
        printed[assistant.id] = len(assistant.content)

    print(f"\nChatting with {backend}. Type 'exit' or 'quit' to stop.")
    while True:
        user_input = input("\nYou: ").strip()
        if user_input.lower() in ["exit", "quit"]:
            print("Goodbye!")
            break

        if not user_input:
            continue

        print("Assistant: ", end="", flush=True)
        try:
            reply = await session.send_message(user_input, config, on_update=on_update)
        except KeyboardInterrupt:
            session.stop()
            continue
        finished.add(reply.id)
        if reply.status == "error":
            print()
        elif reply.token_usage is not None:
            print(f"\n[{reply.token_usage.total_tokens} tokens]")

    await store.close()


if __name__ == "__main__":
    asyncio.run(main())
