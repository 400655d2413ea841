"""
Structured-output evaluator backed by PydanticAI.

The evaluator turns a prompt into an instance of the requested pydantic
model. One Agent is built per output model and memoized, mirroring how the
rest of the service wires PydanticAI agents.
"""

import logging
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel
from pydantic_ai import Agent

from codereview.infrastructure.config.settings import settings
from codereview.services.llm.exceptions import LLMAPIError, LLMServiceError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a meticulous senior code reviewer. You evaluate a repository against "
    "a single rubric criterion and answer strictly in the requested structure. "
    "Base every statement on the files you were shown; never invent files or line numbers."
)

AgentBuilder = Callable[[Type[BaseModel]], Any]


class StructuredEvaluator:
    """Evaluate prompts into typed objects; raises on any evaluator failure."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        agent_builder: Optional[AgentBuilder] = None,
    ):
        self.model_name = model_name or settings.evaluator_model
        self._agent_builder = agent_builder or self._build_agent
        self._agent_cache: Dict[str, Any] = {}
        logger.info(f"[Evaluator] Initialized StructuredEvaluator with model {self.model_name}")

    def _build_agent(self, output_type: Type[BaseModel]) -> Agent:
        return Agent(
            model=self.model_name,
            output_type=output_type,
            system_prompt=SYSTEM_PROMPT,
        )

    def get_agent(self, output_type: Type[BaseModel]) -> Any:
        key = output_type.__name__
        if key not in self._agent_cache:
            self._agent_cache[key] = self._agent_builder(output_type)
        return self._agent_cache[key]

    async def evaluate(self, prompt: str, output_type: Type[BaseModel]) -> BaseModel:
        """
        Run the prompt and return the structured output.

        Args:
            prompt: Fully rendered evaluation prompt
            output_type: Pydantic model the response must conform to

        Returns:
            Instance of output_type produced by the model

        Raises:
            LLMAPIError: If the model call fails
        """
        agent = self.get_agent(output_type)
        try:
            result = await agent.run(prompt)
        except LLMServiceError:
            raise
        except Exception as e:
            logger.warning(f"[Evaluator] {output_type.__name__} evaluation failed: {e!r}")
            raise LLMAPIError(f"Evaluator call failed: {str(e) or e.__class__.__name__}") from e

        return result.output
