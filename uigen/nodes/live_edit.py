"""Single-shot edit of one element in existing generated code."""

from __future__ import annotations

from ..errors import ConfigurationError
from ..services.base import CodeModel
from ..types import LiveEditResult
from ..utils.prompts import load_prompt, strip_code_fences
from .base import BaseNode


class LiveEdit(BaseNode):
    """Applies an instruction to the element carrying ``data-id=<selected id>``."""

    timing_key = "live_edit"

    def __init__(self, run_id: str, logger, events, code_model: CodeModel) -> None:
        super().__init__(name="LiveEdit", run_id=run_id, logger=logger, events=events)
        self._code_model = code_model

    async def live_edit(self, current_code: str, selected_data_id: str, instruction: str) -> LiveEditResult:
        if not current_code.strip():
            return LiveEditResult(success=False, updated_code=current_code, error="No code to edit.")
        if f'data-id="{selected_data_id}"' not in current_code:
            return LiveEditResult(
                success=False,
                updated_code=current_code,
                error=f"Element with data-id '{selected_data_id}' not found in the current code.",
            )

        prompt = load_prompt(
            "live_edit",
            {"data_id": selected_data_id, "instruction": instruction.strip(), "code": current_code.strip()},
        )
        self.log_prompt(prompt)
        try:
            raw = await self._code_model.edit_code(prompt)
        except ConfigurationError:
            raise
        except Exception as err:
            self.warn(f"Live edit failed for {selected_data_id}: {err}")
            return LiveEditResult(success=False, updated_code=current_code, error=str(err))
        self.log_response({"raw": raw})

        updated = strip_code_fences(raw or "")
        if not updated:
            return LiveEditResult(success=False, updated_code=current_code, error="Model returned empty code.")
        self.emit(f"Applied live edit to {selected_data_id}", data_id=selected_data_id)
        return LiveEditResult(success=True, updated_code=updated + "\n")
