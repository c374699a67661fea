"""Source checkout actions.

The checkout stage leaves the worker workspace at the requested revision with no
untracked or ignored files. Every command is safe to repeat, so running the
stage twice yields the same tree.
"""

from __future__ import annotations

from trackkit import Action, Stage

from build_pipeline.framework.config import CHECKOUT_STAGE_NAME, SourceConfig


def checkout_actions(source: SourceConfig) -> tuple[Action, ...]:
    actions: list[Action] = [Action(name="git_init", argv=("git", "init", "--quiet"))]
    target = source.revision
    if source.repository:
        actions.append(
            Action(
                name="git_fetch",
                argv=("git", "fetch", "--force", "--quiet", source.repository, source.revision),
            )
        )
        target = "FETCH_HEAD"
    actions.extend(
        [
            Action(name="git_reset", argv=("git", "reset", "--hard", "--quiet", target)),
            Action(name="git_clean", argv=("git", "clean", "-ffdx", "--quiet")),
        ]
    )
    return tuple(actions)


def checkout_stage(source: SourceConfig, *, name: str = CHECKOUT_STAGE_NAME) -> Stage:
    return Stage(name=name, actions=checkout_actions(source))
