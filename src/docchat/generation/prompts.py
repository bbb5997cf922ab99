"""Prompt templates for answer generation."""

from __future__ import annotations

ANSWER_PROMPT = """You are a helpful assistant with access to conversation history and relevant context. Use the context below to answer the user's question, and consider the conversation history to provide more relevant and contextual responses.

<context>
{context}
</context>

Question: {input}

Instructions:
- If the context is unrelated to the question, say "I don't have information about that in my knowledge base."
- If the question refers to previous parts of the conversation, use that context to provide a more relevant answer.
- Be conversational and maintain context from the ongoing conversation.
- Each context may contain a 'Category' and 'Filename' to help you understand the source."""

CONVERSATION_PROMPT = """Previous conversation:
{transcript}

Current question: {question}

Please answer the current question while considering the conversation history above."""
