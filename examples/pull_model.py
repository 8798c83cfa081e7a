import sys

from ollama_chat_sdk import OllamaClient, PullProgressTracker
from ollama_chat_sdk.utils import format_bytes

model = sys.argv[1] if len(sys.argv) > 1 else "llama3"
tracker = PullProgressTracker()

with OllamaClient() as client:
    tracker.begin(model)
    for event in client.pull_model(model):
        tracker.update(event)
        if (ratio := tracker.ratio) is not None:
            print(f"\r{event.status}: {ratio:6.1%} of {format_bytes(event.total)}", end="", flush=True)
        else:
            print(f"\n{event.status}", end="", flush=True)
    tracker.finish()
    print()
