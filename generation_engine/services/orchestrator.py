"""
Generation orchestrator.

This module provides the single generation entry point. It dispatches a
request to one of five modes (direct, structured, multi-vertical, batch,
edit-existing), calls the provider registry for every generation, writes
results into the generation tree and reports progress to an optional
event sink.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Union

from ..core.models.errors import ErrorResponse, GenerationError, ValidationError
from ..core.models.events import EventType
from ..core.models.generation import GenerationConfig, GenerationMode, GenerationResponse, VerticalMode
from ..core.models.tree import GenerationNode, NodeType
from ..utils.logging import GenerationLogger
from .context_assembler import ContextAssembler, DEFAULT_MAX_TOKENS
from .events import EventSink, emit_event
from .provider_registry import ProviderRegistry
from .tree_store import TreeStore
from . import workflows


logger = logging.getLogger(__name__)

CONTEXT_SELECTION_KEYS = ("style_guides", "previous_content", "reference_images", "custom_context")

USAGE_FIELDS = ("input_tokens", "output_tokens", "total_tokens", "cost")

CONFIG_ALIASES = {
    "fallback_allowed": ["fallbackAllowed"],
    "output_count": ["outputCount"],
    "vertical_mode": ["verticalMode"],
    "skip_steps": ["skipSteps"],
    "parent_node_id": ["parentNodeId"],
    "root_node_id": ["rootNodeId"],
    "existing_content": ["existingContent"],
    "edit_instructions": ["editInstructions"]
}

EDITOR_INSTRUCTION = (
    "You are an expert editor. Make the requested changes while maintaining "
    "the quality and voice of the content."
)


def build_edit_prompt(existing_content: str, instructions: str) -> str:
    return (
        "Please edit the following content according to these instructions:\n\n"
        f"Instructions: {instructions}\n\n"
        f"Content to edit:\n{existing_content}"
    )


def build_adaptation_prompt(base_content: str, from_vertical: str, to_vertical: str) -> str:
    return (
        f"Adapt the following content from {from_vertical} to {to_vertical}:\n\n"
        f"{base_content}\n\n"
        f"Maintain the core message and structure while making it relevant to the {to_vertical} industry."
    )


def aggregate_usage(results: Union[List[Any], Dict[str, Any], None]) -> Dict[str, Any]:
    """
    Sum token and cost fields across results.

    Each item contributes its ``usage`` if it has one, otherwise the item
    itself; missing fields count as zero.

    Args:
        results: List of results or usage dicts, or a single result

    Returns:
        Aggregated usage; a single result's own usage; ``{}`` for an empty list
    """
    if not isinstance(results, list):
        if isinstance(results, dict):
            return results.get("usage") or {}
        return {}

    if not results:
        return {}

    totals = {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0, "cost": 0.0}
    for item in results:
        if not isinstance(item, dict):
            continue
        usage = item.get("usage") if isinstance(item.get("usage"), dict) else item
        for field in USAGE_FIELDS:
            totals[field] += usage.get(field) or 0

    totals["cost"] = round(totals["cost"], 10)
    return totals


class GenerationOrchestrator:
    """
    Top-level generation coordinator.

    Every generation goes through the provider registry; every output
    becomes a node in the generation tree.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tree_store: TreeStore,
        context_assembler: Optional[ContextAssembler] = None,
        batch_size: int = 5,
        max_context_tokens: int = DEFAULT_MAX_TOKENS
    ):
        """
        Initialize generation orchestrator.

        Args:
            registry: Provider registry
            tree_store: Generation tree store
            context_assembler: Optional context assembler
            batch_size: Concurrent prompts per batch-mode sub-batch
            max_context_tokens: Token budget for assembled context
        """
        self.registry = registry
        self.tree_store = tree_store
        self.context_assembler = context_assembler
        self.batch_size = max(1, batch_size)
        self.max_context_tokens = max_context_tokens
        self.generation_logger = GenerationLogger()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_config(config: Union[GenerationConfig, Dict[str, Any]]) -> GenerationConfig:
        if isinstance(config, GenerationConfig):
            return config

        data = dict(config or {})
        for canonical, aliases in CONFIG_ALIASES.items():
            for alias in aliases:
                if alias in data:
                    data.setdefault(canonical, data.pop(alias))
        if data.get("mode") is None:
            data.pop("mode", None)

        known = set(GenerationConfig.model_fields)
        extra = {key: value for key, value in data.items() if key not in known}
        fields = {key: value for key, value in data.items() if key in known}
        if extra:
            fields["options"] = {**extra, **(fields.get("options") or {})}
        return GenerationConfig(**fields)

    async def generate(
        self,
        config: Union[GenerationConfig, Dict[str, Any]],
        sink: Optional[EventSink] = None
    ) -> Dict[str, Any]:
        """
        Run a generation.

        Args:
            config: Generation configuration; ``mode`` defaults to direct
            sink: Optional progress event sink, closed when the run ends

        Returns:
            Mode-specific result with aggregated ``usage`` and ``timing``

        Raises:
            GenerationError: Wrapping any failure as "Generation failed: <reason>"
        """
        start_time = time.time()
        started_at = datetime.now(timezone.utc)
        mode = GenerationMode.DIRECT.value
        task = None

        try:
            config = self._coerce_config(config)
            mode = config.mode or GenerationMode.DIRECT.value
            task = config.task

            self.generation_logger.log_generation_start(mode, task)

            if mode == GenerationMode.DIRECT.value:
                result = await self.direct_generation(config, sink)
            elif mode == GenerationMode.STRUCTURED.value:
                result = await self.structured_generation(config, sink)
            elif mode == GenerationMode.MULTI_VERTICAL.value:
                result = await self.multi_vertical_generation(config, sink)
            elif mode == GenerationMode.BATCH.value:
                result = await self.batch_generation(config, sink)
            elif mode == GenerationMode.EDIT_EXISTING.value:
                result = await self.edit_existing(config, sink)
            else:
                raise ValidationError(f"Unknown generation mode: {mode}", "mode", mode)

            total_ms = int((time.time() - start_time) * 1000)
            result["timing"] = {
                "total_ms": total_ms,
                "start_time": started_at.isoformat(),
                "end_time": datetime.now(timezone.utc).isoformat()
            }

            self.generation_logger.log_generation_complete(mode, task, total_ms)
            return result

        except Exception as e:
            reason = e.message if hasattr(e, "message") else str(e)
            self.generation_logger.log_generation_error(mode, task, reason)
            error = GenerationError(f"Generation failed: {reason}", mode=mode, cause=e)
            await emit_event(sink, EventType.ERROR, **ErrorResponse.from_exception(error).model_dump(mode="json"))
            raise error from e

        finally:
            if sink is not None:
                await sink.close()

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def resolve_context(self, context: Any) -> Optional[str]:
        """
        Turn the caller's context into a prompt-context string.

        Strings pass through; context selections are assembled and
        optimized. Assembly failures degrade to no context.
        """
        if context is None:
            return None
        if isinstance(context, str):
            return context or None
        if not isinstance(context, dict):
            return None

        if self.context_assembler is None or not any(context.get(key) for key in CONTEXT_SELECTION_KEYS):
            return None

        try:
            built = await self.context_assembler.build_context(context)
            return self.context_assembler.optimize_context(built, self.max_context_tokens)
        except Exception as e:
            logger.warning(f"Context assembly failed, continuing without context: {str(e)}")
            return None

    @staticmethod
    def _context_snapshot(context: Any) -> str:
        if isinstance(context, str):
            return context
        return json.dumps(context or {}, default=str)

    async def _call_provider(
        self,
        config: GenerationConfig,
        task: Optional[str],
        prompt: str,
        options: Dict[str, Any],
        context: Optional[str]
    ) -> GenerationResponse:
        request_options = {**config.options, **options}
        if context:
            request_options["context"] = context

        return await self.registry.generate({
            "task": task,
            "prompt": prompt,
            "provider": config.provider,
            "model": config.model,
            "fallback_allowed": config.fallback_allowed,
            "options": request_options
        })

    def _node_from_response(
        self,
        response: GenerationResponse,
        node_type: str,
        mode: str,
        prompt: str,
        snapshot: str,
        vertical: Optional[str] = None,
        parent_id: Optional[str] = None,
        root_id: Optional[str] = None
    ) -> GenerationNode:
        return GenerationNode(
            type=node_type,
            content=response.content,
            mode=mode,
            vertical=vertical or "all",
            parent_id=parent_id,
            root_id=root_id,
            provider=response.provider,
            model=response.model,
            prompt=prompt,
            context=snapshot,
            tokens_used=response.usage.total_tokens,
            cost=response.usage.cost
        )

    @staticmethod
    def _result(node: GenerationNode, response: GenerationResponse, **extra) -> Dict[str, Any]:
        return {
            "node_id": node.id,
            "content": response.content,
            "provider": response.provider,
            "model": response.model,
            "usage": response.usage.model_dump(),
            **extra
        }

    @staticmethod
    def _vertical_of(config: GenerationConfig) -> Optional[str]:
        if isinstance(config.vertical, str):
            return config.vertical
        return None

    # ------------------------------------------------------------------
    # Direct
    # ------------------------------------------------------------------

    async def direct_generation(
        self,
        config: GenerationConfig,
        sink: Optional[EventSink] = None,
        context: Optional[str] = None,
        context_resolved: bool = False
    ) -> Dict[str, Any]:
        """
        Generate ``output_count`` alternatives for one prompt.

        Outputs after the first raise the temperature to diversify.
        Without a parent or root node, output 0 becomes a new tree root
        and the others top-level alternatives of it. Output 0 is selected.
        """
        mode = GenerationMode.DIRECT.value
        count = config.output_count
        vertical = self._vertical_of(config)
        node_type = workflows.get_node_type_for_task(config.task)
        snapshot = self._context_snapshot(config.context)
        if not context_resolved:
            context = await self.resolve_context(config.context)

        await emit_event(sink, EventType.GENERATION_START, mode=mode, task=config.task, output_count=count)

        results = []
        root_node_id = config.root_node_id

        for index in range(count):
            await emit_event(sink, EventType.OUTPUT_START, index=index, progress=index / count)

            options = {"vertical": vertical, "mode": mode}
            if index > 0:
                options["temperature"] = round(0.8 + 0.1 * index, 2)

            response = await self._call_provider(config, config.task, config.prompt, options, context)

            node = self._node_from_response(
                response, node_type, mode, config.prompt, snapshot,
                vertical=vertical,
                parent_id=config.parent_node_id,
                root_id=root_node_id
            )

            if config.parent_node_id or config.root_node_id:
                node = await self.tree_store.add_node(node)
            elif index == 0:
                node = await self.tree_store.create_tree(node)
                root_node_id = node.id
            else:
                node = await self.tree_store.add_node(node)

            result = self._result(node, response, index=index)
            results.append(result)

            self.generation_logger.log_generation_step(mode, f"output {index + 1}/{count}", (index + 1) / count)
            await emit_event(
                sink, EventType.OUTPUT_COMPLETE,
                index=index, result=result, progress=(index + 1) / count
            )

        if config.parent_node_id or config.root_node_id:
            await self.tree_store.select_node(results[0]["node_id"])

        return {
            "mode": mode,
            "task": config.task,
            "results": results,
            "selected_index": 0,
            "root_node_id": root_node_id,
            "usage": aggregate_usage(results)
        }

    # ------------------------------------------------------------------
    # Structured
    # ------------------------------------------------------------------

    async def structured_generation(self, config: GenerationConfig, sink: Optional[EventSink] = None) -> Dict[str, Any]:
        """
        Run the task's multi-step workflow.

        Each step's prompt is built from the previous step's output and
        each step's node is a child of the previous step's node.
        """
        mode = GenerationMode.STRUCTURED.value
        workflow_name = workflows.get_workflow_name(config.task)
        workflow = workflows.get_workflow(config.task)
        vertical = self._vertical_of(config)
        snapshot = self._context_snapshot(config.context)
        context = await self.resolve_context(config.context)

        steps = [
            step for step, can_skip in zip(workflow["steps"], workflow["can_skip"])
            if not (can_skip and step in config.skip_steps)
        ]

        await emit_event(sink, EventType.GENERATION_START, mode=mode, workflow=workflow_name, steps=steps)

        if config.root_node_id:
            root_id = config.root_node_id
        else:
            root = await self.tree_store.create_tree(GenerationNode(
                type=NodeType.IDEA.value,
                content=config.prompt or "",
                mode=mode,
                vertical=vertical or "all",
                prompt=config.prompt,
                context=snapshot
            ))
            root_id = root.id

        results = {}
        previous_content = config.prompt or ""
        parent_id = config.parent_node_id or root_id

        for index, step in enumerate(steps):
            await emit_event(sink, EventType.STEP_START, step=step, progress=index / len(steps))

            task = workflows.get_task_for_step(step)
            prompt = workflows.build_step_prompt(step, previous_content, vertical)
            options = {
                **workflows.get_step_options(step),
                "complexity": workflows.get_step_complexity(step),
                "vertical": vertical,
                "mode": mode
            }

            response = await self._call_provider(config, task, prompt, options, context)

            node = await self.tree_store.add_node(self._node_from_response(
                response, step, mode, prompt, snapshot,
                vertical=vertical,
                parent_id=parent_id,
                root_id=root_id
            ))
            node = await self.tree_store.select_node(node.id)

            results[step] = self._result(node, response, step=step, task=task)
            previous_content = response.content
            parent_id = node.id

            progress = (index + 1) / len(steps)
            self.generation_logger.log_generation_step(mode, step, progress)
            await emit_event(sink, EventType.STEP_COMPLETE, step=step, result=results[step], progress=progress)

        return {
            "mode": mode,
            "workflow": workflow_name,
            "results": results,
            "root_node_id": root_id,
            "final_node_id": parent_id,
            "usage": aggregate_usage(list(results.values()))
        }

    # ------------------------------------------------------------------
    # Multi-vertical
    # ------------------------------------------------------------------

    @staticmethod
    def resolve_verticals(vertical: Union[str, List[str], None]) -> List[str]:
        if vertical is None or vertical == "all":
            return list(workflows.DEFAULT_VERTICALS)
        if isinstance(vertical, str):
            return [vertical]
        return list(vertical)

    async def multi_vertical_generation(self, config: GenerationConfig, sink: Optional[EventSink] = None) -> Dict[str, Any]:
        """
        Generate content for each target vertical.

        Parallel runs every vertical concurrently and records a failing
        vertical as ``{"error": ...}``. Sequential generates the first
        vertical and adapts its content for the others. Adaptive gives
        each vertical the preceding vertical's output as extra context.
        """
        mode = GenerationMode.MULTI_VERTICAL.value
        vertical_mode = config.vertical_mode or VerticalMode.PARALLEL.value
        verticals = self.resolve_verticals(config.vertical)
        snapshot = self._context_snapshot(config.context)
        context = await self.resolve_context(config.context)

        await emit_event(
            sink, EventType.GENERATION_START,
            mode=mode, vertical_mode=vertical_mode, target_verticals=verticals
        )

        root = await self.tree_store.create_tree(GenerationNode(
            type=NodeType.IDEA.value,
            content=config.prompt or "",
            mode=mode,
            vertical="all",
            prompt=config.prompt,
            context=snapshot
        ))

        results: Dict[str, Dict[str, Any]] = {}
        total = len(verticals)

        if vertical_mode == VerticalMode.PARALLEL.value:
            async def run(index: int, vertical: str) -> Dict[str, Any]:
                await emit_event(sink, EventType.VERTICAL_START, vertical=vertical, progress=index / total)
                result = await self.generate_for_vertical(config, vertical, context, snapshot, root.id)
                await emit_event(sink, EventType.VERTICAL_COMPLETE, vertical=vertical, result=result)
                return result

            outcomes = await asyncio.gather(
                *(run(index, vertical) for index, vertical in enumerate(verticals)),
                return_exceptions=True
            )
            for vertical, outcome in zip(verticals, outcomes):
                if isinstance(outcome, Exception):
                    message = outcome.message if hasattr(outcome, "message") else str(outcome)
                    logger.error(f"Failed to generate for {vertical}: {message}")
                    results[vertical] = {"error": message, "vertical": vertical}
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results[vertical] = outcome

        elif vertical_mode == VerticalMode.SEQUENTIAL.value:
            base_content = None
            for index, vertical in enumerate(verticals):
                await emit_event(sink, EventType.VERTICAL_START, vertical=vertical, progress=index / total)

                if index == 0:
                    results[vertical] = await self.generate_for_vertical(config, vertical, context, snapshot, root.id)
                    base_content = results[vertical]["content"]
                else:
                    results[vertical] = await self.adapt_content_for_vertical(
                        config, base_content, verticals[0], vertical, context, snapshot, root.id
                    )

                await emit_event(
                    sink, EventType.VERTICAL_COMPLETE,
                    vertical=vertical, result=results[vertical], progress=(index + 1) / total
                )

        elif vertical_mode == VerticalMode.ADAPTIVE.value:
            previous = None
            for index, vertical in enumerate(verticals):
                await emit_event(sink, EventType.VERTICAL_START, vertical=vertical, progress=index / total)

                vertical_context = context
                if previous is not None:
                    section = f"# Previous Content ({previous})\n{results[previous]['content']}"
                    vertical_context = f"{context}\n\n---\n\n{section}" if context else section

                results[vertical] = await self.generate_for_vertical(
                    config, vertical, vertical_context, snapshot, root.id
                )
                previous = vertical

                await emit_event(
                    sink, EventType.VERTICAL_COMPLETE,
                    vertical=vertical, result=results[vertical], progress=(index + 1) / total
                )

        else:
            raise ValidationError(f"Unknown vertical mode: {vertical_mode}", "vertical_mode", vertical_mode)

        return {
            "mode": mode,
            "vertical_mode": vertical_mode,
            "target_verticals": verticals,
            "results": results,
            "root_node_id": root.id,
            "usage": aggregate_usage([r for r in results.values() if "error" not in r])
        }

    async def generate_for_vertical(
        self,
        config: GenerationConfig,
        vertical: str,
        context: Optional[str],
        snapshot: str,
        root_id: str
    ) -> Dict[str, Any]:
        mode = GenerationMode.MULTI_VERTICAL.value
        options = {
            "vertical": vertical,
            "mode": mode,
            "system_instruction": f"You are generating content specifically for the {vertical} industry."
        }

        response = await self._call_provider(config, config.task, config.prompt, options, context)

        node = await self.tree_store.add_node(self._node_from_response(
            response, workflows.get_node_type_for_task(config.task), mode, config.prompt, snapshot,
            vertical=vertical,
            parent_id=root_id,
            root_id=root_id
        ))
        return self._result(node, response, vertical=vertical)

    async def adapt_content_for_vertical(
        self,
        config: GenerationConfig,
        base_content: str,
        from_vertical: str,
        to_vertical: str,
        context: Optional[str],
        snapshot: str,
        root_id: str
    ) -> Dict[str, Any]:
        mode = GenerationMode.MULTI_VERTICAL.value
        prompt = build_adaptation_prompt(base_content, from_vertical, to_vertical)
        options = {
            "vertical": to_vertical,
            "mode": mode,
            "system_instruction": f"You are adapting content for the {to_vertical} industry."
        }

        response = await self._call_provider(config, "blog_adaptation", prompt, options, context)

        node = await self.tree_store.add_node(self._node_from_response(
            response, workflows.get_node_type_for_task(config.task), mode, prompt, snapshot,
            vertical=to_vertical,
            parent_id=root_id,
            root_id=root_id
        ))
        return self._result(node, response, vertical=to_vertical, adapted_from=from_vertical)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def batch_generation(self, config: GenerationConfig, sink: Optional[EventSink] = None) -> Dict[str, Any]:
        """
        Run one direct generation per prompt, ``batch_size`` at a time.

        Item failures are recorded as ``{"index", "error"}`` and do not
        stop the batch.

        Raises:
            ValidationError: If ``prompts`` is not a list
        """
        mode = GenerationMode.BATCH.value
        prompts = config.prompts
        if not isinstance(prompts, list):
            raise ValidationError("Batch generation requires an array of prompts", "prompts", prompts)

        if not prompts:
            return {"mode": mode, "results": [], "usage": {}}

        await emit_event(sink, EventType.GENERATION_START, mode=mode, count=len(prompts))

        context = await self.resolve_context(config.context)

        async def run(index: int, prompt: str) -> Dict[str, Any]:
            await emit_event(sink, EventType.BATCH_ITEM_START, index=index)
            try:
                item_config = config.model_copy(update={
                    "prompt": prompt,
                    "output_count": 1,
                    "parent_node_id": None,
                    "root_node_id": None
                })
                generated = await self.direct_generation(item_config, context=context, context_resolved=True)
            except Exception as e:
                message = e.message if hasattr(e, "message") else str(e)
                logger.error(f"Batch item {index} failed: {message}")
                return {"index": index, "error": message}

            result = generated["results"][0]
            await emit_event(sink, EventType.BATCH_ITEM_COMPLETE, index=index, result=result)
            return {"index": index, "result": result}

        results = []
        for start in range(0, len(prompts), self.batch_size):
            chunk = prompts[start:start + self.batch_size]
            results.extend(await asyncio.gather(
                *(run(start + offset, prompt) for offset, prompt in enumerate(chunk))
            ))

        results.sort(key=lambda item: item["index"])
        return {
            "mode": mode,
            "results": results,
            "usage": aggregate_usage([item["result"] for item in results if "error" not in item])
        }

    # ------------------------------------------------------------------
    # Edit existing
    # ------------------------------------------------------------------

    async def edit_existing(self, config: GenerationConfig, sink: Optional[EventSink] = None) -> Dict[str, Any]:
        """
        Edit existing content into a new node.

        Raises:
            ValidationError: If content or instructions are missing
        """
        mode = GenerationMode.EDIT_EXISTING.value
        if not config.existing_content or not config.edit_instructions:
            raise ValidationError("Editing requires existing content and edit instructions")

        task = config.task or "blog_editing"
        vertical = self._vertical_of(config)
        prompt = build_edit_prompt(config.existing_content, config.edit_instructions)
        context = await self.resolve_context(config.context)

        await emit_event(sink, EventType.GENERATION_START, mode=mode, task=task)

        response = await self._call_provider(
            config, task, prompt,
            {"vertical": vertical, "mode": mode, "system_instruction": EDITOR_INSTRUCTION},
            context
        )

        node = self._node_from_response(
            response, NodeType.BLOG.value, mode, prompt, self._context_snapshot(config.context),
            vertical=vertical,
            parent_id=config.parent_node_id,
            root_id=config.root_node_id
        )
        if config.parent_node_id or config.root_node_id:
            node = await self.tree_store.add_node(node)
            node = await self.tree_store.select_node(node.id)
        else:
            node = await self.tree_store.create_tree(node)

        return {
            "mode": mode,
            "node_id": node.id,
            "original_content": config.existing_content,
            "edited_content": response.content,
            "instructions": config.edit_instructions,
            "usage": response.usage.model_dump()
        }
