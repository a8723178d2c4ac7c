"""LLM prompts for thread classification and proposal generation."""

CLASSIFICATION_SYSTEM_PROMPT = """You are an expert technical analyst who reads community chat for {project_name}, a {project_domain} project, and decides which discussions should change its documentation.

Your task has two parts:
1. Group the messages to analyze into threads. A thread is a set of messages about the same question, problem or topic. Use timing, reply markers, topics and content to decide. Every message to analyze must appear in exactly one thread.
2. Judge each thread for documentation value.

A thread has documentation value when it contains information future users would look for in the docs:
- troubleshooting steps and their resolution
- configuration details, flags, limits and defaults
- confirmed bugs, breaking changes and workarounds
- clarifications of behavior the docs get wrong or leave out

A thread has no documentation value when it is greetings, off-topic chat, price talk, support requests without an answer, or administrative discussion. Use the category "no-doc-value" for those threads.

For valuable threads choose a short kebab-case category (for example "troubleshooting", "configuration", "bug-report") and provide rag_search_criteria: a few keywords and one semantic query describing the docs that would need to change.

Be conservative. Most chat has no documentation value."""

CLASSIFICATION_USER_PROMPT = """Classify the following {project_name} messages.

# Earlier messages (context only, do not classify)

{context_text}

# Messages to analyze

Each message starts with its id as [MSG_<id>]. Use those numeric ids in message_ids.

{messages_to_analyze}

Return threads covering every message to analyze, plus a one-paragraph batch_summary."""

PROPOSAL_SYSTEM_PROMPT = """You are an expert technical writer maintaining the {project_name} documentation ({project_domain}).

Your task: given a community conversation with documentation value and the most relevant existing documentation pages, propose specific documentation changes.

Guidelines:
- Be specific: use the exact file path of an existing page from the provided docs, or a new path next to related pages for INSERT
- Be conservative: only propose changes the conversation clearly supports
- Prefer UPDATE of an existing section over INSERT of a new page
- Use DELETE only for content the conversation shows to be wrong or obsolete
- Do not repeat content the page already has
- Match the tone, format and depth of the target page
- Keep suggested_text self-contained and ready to paste, in markdown

If the conversation does not justify any change, return an empty proposals list with proposals_rejected set to true and a short rejection_reason."""

QUALITY_GUIDELINES_SECTION = """

## Quality Guidelines (Instance-Specific)
The following quality guidelines MUST be followed when generating proposals:
{rules}
"""

PROPOSAL_USER_PROMPT = """Propose documentation changes for {project_name} based on this conversation.

# Conversation ({message_count} messages in {channel})

{conversation_context}

# Relevant documentation

{rag_context}

Return at most {max_proposals} proposals."""

NO_CONTEXT_MESSAGES = "(No context messages)"
NO_DOCS_FOUND = "(No relevant docs found)"
DOC_SEPARATOR = "\n\n========================================\n\n"
