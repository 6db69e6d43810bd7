"""chatroom-core: the message broker for the agent chatroom."""
