"""
Prompt templates and fixed replies.

Keeping templates in a separate module makes them easy to iterate on
without touching generation logic.  Section order and delimiters are part of
the contract with the model: the system instruction tells it to reason only
over this exact structure.
"""

# ---------------------------------------------------------------------------
# Prompt sections
# ---------------------------------------------------------------------------

SYSTEM_INSTRUCTION = (
    "You are a helpful AI assistant. Answer the user's question based ONLY on the provided context. "
    "If the context doesn't contain enough information to answer the question, say so clearly. "
    "Do not make up information or hallucinate answers.\n\n"
)

HISTORY_HEADER = "=== CONVERSATION HISTORY ===\n"
CONTEXT_HEADER = "=== RELEVANT CONTEXT ===\n"
CONTEXT_FOOTER = "=== END OF CONTEXT ===\n\n"
QUESTION_HEADER = "=== USER QUESTION ===\n"
RESPONSE_HEADER = "\n\n=== YOUR RESPONSE ===\n"

HISTORY_LINE_TEMPLATE = "{role}: {content}\n"
CONTEXT_BLOCK_TEMPLATE = "[Document {order}: {title}]\n{content}\n\n"

# Last 3 user/assistant pairs
HISTORY_WINDOW = 6

# ---------------------------------------------------------------------------
# Fixed replies
# ---------------------------------------------------------------------------

NO_CONTEXT_RESPONSE = (
    "I don't have enough information in my knowledge base to answer: \"{query}\". "
    "Please try rephrasing your question or contact support for more specific assistance."
)

FALLBACK_RESPONSE = (
    "I apologize, but I'm currently experiencing issues with the AI service. "
    "This might be due to API quota limits or temporary service disruptions. "
    "The RAG system is working correctly - I can still retrieve relevant documents, "
    "but I'm unable to generate AI responses right now. "
    "Please try again later or contact support if the issue persists."
)

UNEXPECTED_ERROR_RESPONSE = "An unexpected error occurred while processing your request."

CONNECTION_TEST_PROMPT = "Hello! Please respond with 'Connection successful' if you can read this."
