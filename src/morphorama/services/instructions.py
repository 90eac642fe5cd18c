"""Instruction strategies for guided and fixed-instruction evolutions."""

from dataclasses import dataclass
from typing import Protocol

from morphorama.domain.errors import ConfigurationError
from morphorama.domain.generation import DerivedPrompt
from morphorama.domain.runs import EvolutionMode
from morphorama.services.prompts import PromptGenerator


class InstructionStrategy(Protocol):
    """Produces the instruction used for each iteration."""

    mode: EvolutionMode

    async def next_instruction(
        self,
        image_bytes: bytes,
        iteration: int,
        previous_instruction: str | None,
        total_iterations: int,
    ) -> DerivedPrompt:
        """Return the instruction for the given iteration."""


@dataclass
class GuidedInstructions(InstructionStrategy):
    """Derives a fresh instruction from the current image every iteration."""

    generator: PromptGenerator
    mode: EvolutionMode = EvolutionMode.GUIDED

    async def next_instruction(
        self,
        image_bytes: bytes,
        iteration: int,
        previous_instruction: str | None,
        total_iterations: int,
    ) -> DerivedPrompt:
        return await self.generator.derive(
            image_bytes,
            iteration,
            previous_instruction,
            total_iterations=total_iterations,
        )


@dataclass
class FixedInstruction(InstructionStrategy):
    """Reuses one constant instruction for every iteration."""

    text: str
    mode: EvolutionMode = EvolutionMode.FIXED

    async def next_instruction(
        self,
        image_bytes: bytes,
        iteration: int,
        previous_instruction: str | None,
        total_iterations: int,
    ) -> DerivedPrompt:
        return DerivedPrompt(text=self.text)


def strategy_for_mode(
    mode: EvolutionMode,
    *,
    prompt_generator: PromptGenerator | None,
    fixed_instruction: str,
) -> InstructionStrategy:
    """Select the instruction strategy recorded on a run."""
    if mode == EvolutionMode.FIXED:
        return FixedInstruction(text=fixed_instruction)
    if prompt_generator is None:
        raise ConfigurationError("Guided mode requires a configured prompt provider")
    return GuidedInstructions(generator=prompt_generator)
