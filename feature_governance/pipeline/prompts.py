"""Prompt templates for each pipeline stage.

Wording is a deployment concern and can be replaced freely; the stages only
depend on the output contracts spelled out in each system prompt.
"""

from __future__ import annotations

from feature_governance.schemas import DiscussionItem


# =============================================================================
# Signal ingestion
# =============================================================================

SYNTHESIS_PROMPT = """You are a product analyst for a community media platform.

Analyze the following forum threads and derive feature proposals from the needs and requests of the community.

For each proposal provide:
1. title: short feature title (max 100 characters)
2. description: what it does and why it is useful
3. priority: based on how many members ask for it or its impact (low/medium/high/critical)
4. category: one of streaming, forum, profiles, monetization, social, admin, other

Respond ONLY with a valid JSON array. Example:
[
  {
    "title": "Automatic dark mode",
    "description": "Switch between light and dark mode depending on the time of day",
    "priority": "medium",
    "category": "other"
  }
]

If there are no clear proposals, respond with an empty array: []"""


def format_discussion_item(item: DiscussionItem, excerpt_chars: int) -> str:
    excerpt = (item.body or "")[:excerpt_chars] or "No content"
    return (
        f"Title: {item.title}\n"
        f"Content: {excerpt}\n"
        f"Views: {item.views}\n"
        f"Replies: {item.replies}"
    )


def format_synthesis_prompt(items: list[DiscussionItem], excerpt_chars: int) -> str:
    threads = "\n\n---\n\n".join(format_discussion_item(i, excerpt_chars) for i in items)
    return f"Forum threads to analyze:\n\n{threads}"


# =============================================================================
# Code generation
# =============================================================================

IMPLEMENTATION_PROMPT = """You are a senior software architect for a community media platform. Generate complete, working implementation code for the feature described by the user.

## Architecture
- Frontend: React 18 + Tailwind CSS
- Backend: serverless functions written in TypeScript
- Database: PostgreSQL

## Output format
Respond with clearly fenced code blocks, one fence tag per artifact kind:
- ```tsx for frontend components
- ```typescript for backend functions
- ```sql for database migrations

You may emit several blocks of the same kind. Include row-level security policies for new tables and complete error handling. Generate COMPLETE, working code, not fragments."""


IMPLEMENTATION_USER_PROMPT = """## Proposal: {title}

### Description:
{description}

### Requirements:
1. Generate the SQL needed (if any)
2. Generate the backend functions needed (if any)
3. Generate the React components needed
4. Make sure all code is complete and ready to use

Generate the full implementation following the system instructions."""


def format_implementation_prompt(title: str, description: str) -> str:
    return IMPLEMENTATION_USER_PROMPT.format(title=title, description=description)


# =============================================================================
# Validation
# =============================================================================

VALIDATION_PROMPT = """You are an expert code reviewer. Validate AI-generated code before it is integrated.

## Criteria

### 1. syntax
- Valid TypeScript/TSX and SQL
- Correct imports, no evident syntax errors

### 2. security
- No exposed secrets or API keys
- Adequate row-level security for new tables
- User input validated; no XSS or SQL injection

### 3. logic
- The code does what the proposal describes
- Appropriate error handling, no evident logic bugs

### 4. compatibility
- Compatible with React 18 + TypeScript and the existing architecture

## Response format
Respond ONLY with valid JSON of this shape:
{
  "overallScore": 0-100,
  "passed": true/false,
  "validations": [
    {
      "type": "syntax|security|logic|compatibility",
      "status": "passed|failed|warning",
      "message": "Result description",
      "details": "Additional details if any"
    }
  ],
  "summary": "Overall summary",
  "recommendations": ["Recommendations, if any"]
}"""


VALIDATION_USER_PROMPT = """## Proposal: {title}

### Description:
{description}

### Code to validate:

#### Frontend (React/TSX):
```tsx
{frontend}
```

#### Backend:
```typescript
{backend}
```

#### Database (SQL):
```sql
{database}
```

Validate this code against the criteria and respond in JSON."""


def format_validation_prompt(
    title: str,
    description: str,
    frontend: str,
    backend: str,
    database: str,
) -> str:
    return VALIDATION_USER_PROMPT.format(
        title=title,
        description=description,
        frontend=frontend,
        backend=backend,
        database=database,
    )
