from ollama_chat_sdk import OllamaClient

with OllamaClient() as client:
    response = client.chat("llama3", "How tall is Michael Jordan?")
    print(response["content"])
