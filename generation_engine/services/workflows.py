"""
Workflow and routing tables.

Static lookup tables shared by the provider selector and the
orchestrator: per-task provider defaults, fallback chains, structured
workflows and their step prompts.
"""

from typing import Dict, List, Optional


DEFAULT_PROVIDER = "anthropic"

TASK_DEFAULTS = {
    "blog_writing_complete": {"provider": "anthropic", "model": "claude-sonnet-4"},
    "idea_generation": {"provider": "anthropic", "model": "claude-opus-4"},
    "title_generation": {"provider": "openai", "model": "gpt-5-nano"},
    "synopsis_generation": {"provider": "anthropic", "model": "claude-sonnet-4"},
    "outline_creation": {"provider": "anthropic", "model": "claude-sonnet-4"},
    "blog_editing": {"provider": "openai", "model": "gpt-5"},
    "seo_analysis": {"provider": "openai", "model": "gpt-5-nano"},
    "topic_research": {"provider": "perplexity", "model": "sonar-pro"},
    "image_prompt_generation": {"provider": "anthropic", "model": "claude-sonnet-4"},
    "social_post_generation": {"provider": "openai", "model": "gpt-5-mini"}
}

# complexity -> model hint for tasks without a default
COMPLEXITY_MODELS = {
    "anthropic": {"low": "claude-haiku-4", "medium": "claude-sonnet-4", "high": "claude-opus-4"},
    "openai": {"low": "gpt-5-nano", "medium": "gpt-5-mini", "high": "gpt-5"},
    "google": {"low": "gemini-2.5-flash", "medium": "gemini-2.5-pro", "high": "gemini-2.5-pro"},
    "perplexity": {"low": "sonar", "medium": "sonar-pro", "high": "sonar-reasoning-pro"}
}

FALLBACK_PROVIDERS = {
    "openai": [
        {"provider": "anthropic", "model": "claude-sonnet-4"},
        {"provider": "google", "model": "gemini-2.5-pro"}
    ],
    "anthropic": [
        {"provider": "openai", "model": "gpt-5"},
        {"provider": "google", "model": "gemini-2.5-pro"}
    ],
    "google": [
        {"provider": "anthropic", "model": "claude-sonnet-4"},
        {"provider": "openai", "model": "gpt-5"}
    ],
    "perplexity": [
        {"provider": "openai", "model": "gpt-5"},
        {"provider": "anthropic", "model": "claude-sonnet-4"}
    ]
}

DEFAULT_MODELS = {
    "openai": ["gpt-5", "gpt-5-mini", "gpt-5-nano"],
    "anthropic": ["claude-sonnet-4", "claude-opus-4", "claude-haiku-4"],
    "google": ["gemini-2.5-pro", "gemini-2.5-flash"],
    "perplexity": ["sonar-pro", "sonar", "sonar-reasoning-pro"]
}


def get_fallback_providers(provider: str, task: Optional[str] = None) -> List[Dict[str, str]]:
    """
    Ordered fallback candidates for a primary provider.

    Args:
        provider: Primary provider
        task: Task identifier (currently does not alter the chain)

    Returns:
        List of ``{"provider", "model"}`` dicts; empty for unknown providers
    """
    return [dict(candidate) for candidate in FALLBACK_PROVIDERS.get(provider, [])]


def get_default_models_for_provider(provider: str) -> List[str]:
    return list(DEFAULT_MODELS.get(provider, []))


# ------------------------------------------------------------------
# Structured workflows
# ------------------------------------------------------------------

WORKFLOWS = {
    "blog_complete": {
        "steps": ["idea", "title", "synopsis", "outline", "blog"],
        "can_skip": [False, False, True, True, False]
    },
    "blog_with_research": {
        "steps": ["idea", "research", "title", "synopsis", "outline", "blog"],
        "can_skip": [False, True, False, True, True, False]
    },
    "social_campaign": {
        "steps": ["idea", "title", "blog", "social"],
        "can_skip": [False, False, False, False]
    }
}

DEFAULT_WORKFLOW = "blog_complete"

STEP_TASKS = {
    "idea": "idea_generation",
    "research": "topic_research",
    "title": "title_generation",
    "synopsis": "synopsis_generation",
    "outline": "outline_creation",
    "blog": "blog_writing_complete",
    "social": "social_post_generation"
}

TASK_NODE_TYPES = {task: step for step, task in STEP_TASKS.items()}
TASK_NODE_TYPES["blog_editing"] = "blog"
TASK_NODE_TYPES["blog_adaptation"] = "blog"

STEP_COMPLEXITY = {
    "idea": "medium",
    "research": "medium",
    "title": "low",
    "synopsis": "low",
    "outline": "medium",
    "blog": "high",
    "social": "low"
}

STEP_OPTIONS = {
    "title": {"output_count": 5, "temperature": 0.8},
    "idea": {"output_count": 3, "temperature": 0.9},
    "blog": {"max_tokens": 3000, "temperature": 0.7},
    "social": {"output_count": 3, "temperature": 0.8}
}

STEP_PROMPTS = {
    "idea": "Generate a comprehensive blog idea based on: {content}",
    "research": "Research the key facts, sources and current developments for: {content}",
    "title": "Create compelling blog titles for: {content}",
    "synopsis": "Write a brief synopsis for a blog about: {content}",
    "outline": "Create a detailed outline for: {content}",
    "blog": "Write a complete blog post based on: {content}",
    "social": "Create social media posts to promote: {content}"
}

DEFAULT_VERTICALS = ["hospitality", "healthcare", "tech", "athletics"]


def get_workflow(task: Optional[str]) -> Dict[str, List]:
    return WORKFLOWS.get(task, WORKFLOWS[DEFAULT_WORKFLOW])


def get_workflow_name(task: Optional[str]) -> str:
    return task if task in WORKFLOWS else DEFAULT_WORKFLOW


def get_task_for_step(step: str) -> str:
    return STEP_TASKS.get(step, step)


def get_node_type_for_task(task: Optional[str]) -> str:
    return TASK_NODE_TYPES.get(task, "blog")


def get_step_complexity(step: str) -> str:
    return STEP_COMPLEXITY.get(step, "medium")


def get_step_options(step: str) -> Dict:
    return dict(STEP_OPTIONS.get(step, {}))


def build_step_prompt(step: str, previous_content: str, vertical: Optional[str] = "all") -> str:
    """Build the prompt for a workflow step from the previous step's output."""
    template = STEP_PROMPTS.get(step, "Continue working on: {content}")
    prompt = template.format(content=previous_content)
    if vertical and vertical != "all":
        prompt = f"[Industry: {vertical}] {prompt}"
    return prompt
