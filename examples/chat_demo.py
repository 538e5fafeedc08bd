"""Minimal demonstration of the chat service against a local Ollama server."""

from chat_core.api import service

if __name__ == "__main__":
    question = "Bonjour, comment vas-tu ?"
    result = service.run_chat(question)
    print("User:", question)
    if result["error"]:
        print("Error:", result["error"]["message"])
    for group in service.get_conversation_messages(result["conversation_id"]):
        print(group["day"])
        for msg in group["messages"]:
            print(f"  [{msg['time_label']}] {msg['sender']}: {msg['text']}")
