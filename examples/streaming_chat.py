import asyncio

from ollama_chat_sdk import ChatApp


async def main():
    async with ChatApp() as app:
        if app.connection_error:
            print(app.connection_error)
            return

        print(f"Chatting with {app.selected_model} at {app.base_url} (empty line to quit)")
        printed = 0

        def show_reply(session):
            nonlocal printed
            reply = session.history[-1]
            if reply["role"] == "assistant":
                print(reply["content"][printed:], end="", flush=True)
                printed = len(reply["content"])

        app.session.add_listener(show_reply)
        while prompt := input("\n> ").strip():
            printed = 0
            await app.send_message(prompt)
            print()


asyncio.run(main())
