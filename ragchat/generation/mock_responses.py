"""
Keyword-matched canned replies for the `mock` provider.

A pure function with no network code, so it can be used both as the mock
LLM backend and for the no-context path of the orchestrator.

Matching: exact (case-insensitive, trimmed) key first, then the first key
contained in the text in table order, else DEFAULT_RESPONSE.
"""
from __future__ import annotations

DEFAULT_RESPONSE = (
    "I can help you with account management, security settings, billing inquiries, "
    "mobile app features, troubleshooting, and API integration. Please ask me about "
    "any of these topics or try rephrasing your question."
)

# Order matters for substring matching
MOCK_RESPONSES: dict[str, str] = {
    "hello": (
        "Hello! How can I help you today? I can assist with account management, "
        "security settings, billing inquiries, mobile app features, troubleshooting, "
        "and API integration."
    ),
    "hi": (
        "Hi there! What can I help you with? I'm here to assist with account management, "
        "security settings, billing, mobile app features, troubleshooting, and API integration."
    ),
    "hey": (
        "Hey! How can I assist you today? I can help with account management, security "
        "settings, billing inquiries, mobile app features, troubleshooting, and API integration."
    ),
    "good morning": (
        "Good morning! How can I help you today? I'm your RAG-powered assistant ready to "
        "assist with account management, security settings, billing, and more."
    ),
    "good afternoon": (
        "Good afternoon! What can I help you with today? I'm here to assist with account "
        "management, security settings, billing, mobile app features, and more."
    ),
    "good evening": (
        "Good evening! How can I assist you today? I'm your RAG-powered assistant ready to "
        "help with account management, security settings, billing, and more."
    ),
    "thanks": "You're welcome! Is there anything else I can help you with?",
    "thank you": "You're welcome! Is there anything else I can assist you with?",
    "bye": "Goodbye! Feel free to come back anytime if you need help.",
    "goodbye": "Goodbye! Have a great day and come back anytime you need assistance.",
    "help": (
        "I can help you with: account management, security settings, billing inquiries, "
        "mobile app features, troubleshooting, and API integration. What would you like to know?"
    ),
    "password": (
        "You can reset your password from Settings > Security. Click on \"Change Password\" "
        "and enter your current password followed by the new password."
    ),
    "account": (
        "To set up a new account, click on the \"Sign Up\" button on the homepage. Enter your "
        "email address, create a strong password, and provide your full name."
    ),
    "2fa": (
        "Two-Factor Authentication (2FA) adds an extra layer of security. Enable 2FA from "
        "Settings > Security > Two-Factor Authentication."
    ),
    "billing": (
        "We accept various payment methods including credit cards, debit cards, and PayPal. "
        "You can update your payment method from Settings > Billing."
    ),
    "mobile": (
        "Our mobile app is available for both iOS and Android devices. Download it from the "
        "App Store or Google Play Store."
    ),
    "troubleshoot": (
        "If you're having trouble logging in, first check your internet connection, clear "
        "your browser cache and cookies, then try again."
    ),
    "api": (
        "Our API allows developers to integrate our services. Visit the Developer Dashboard "
        "to generate an API key and access comprehensive documentation."
    ),
}


def generate_mock_response(text: str, responses: dict[str, str] | None = None) -> str:
    """Return the canned reply for `text`."""
    table = MOCK_RESPONSES if responses is None else responses
    lowered = text.lower().strip()

    if lowered in table:
        return table[lowered]

    for key, reply in table.items():
        if key in lowered:
            return reply

    return DEFAULT_RESPONSE
