"""ragchat — chat client engine with a lightweight RAG layer and push-synchronized cache."""
