"""
Segment embedding process.

Embeds a batch of journey segments for the executing tenant and stores them
in the tenant-isolated embedding store. Segments are processed one at a
time; a failing segment is counted and skipped, and the execution only
fails when no segment could be embedded.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from vector.exceptions import VectorError

from ..core.exceptions import ExecutionCancelledError
from .base import (
    AnalyticalProcess,
    InputDefinition,
    ProcessCategory,
    ProcessContext,
    ProcessOutcome,
    ProcessProgress,
)


logger = logging.getLogger(__name__)


class SegmentEmbeddingProcess(AnalyticalProcess):
    """
    Embed journey segments into the tenant's vector partition.

    Inputs:
        segments: list of ``{"segment_id": str, "text": str}`` objects,
            optionally with ``segment_type``
        purpose: optional journey purpose prepended to each segment's text

    Output:
        ``{"embedded": int, "failed": int, "records": [...]}``
    """

    process_id = "segment-embedding"
    name = "Segment Embedding"
    description = "Generate and store tenant-isolated embeddings for journey segments"
    category = ProcessCategory.ANALYTICAL

    def input_definition(self) -> InputDefinition:
        return (
            InputDefinition()
            .add_object_list("segments", "Segments to embed (segment_id, text)")
            .add_text_area("purpose", "Journey purpose used as embedding context", required=False)
        )

    def validate_inputs(self, context: ProcessContext) -> List[str]:
        errors = super().validate_inputs(context)
        if errors:
            return errors

        seen = set()
        for i, segment in enumerate(context.inputs["segments"]):
            segment_id = segment.get("segment_id")
            if not isinstance(segment_id, str) or not segment_id:
                errors.append(f"segments[{i}].segment_id must be a non-empty string")
            elif segment_id in seen:
                errors.append(f"segments[{i}].segment_id is duplicated: {segment_id}")
            else:
                seen.add(segment_id)
            if not isinstance(segment.get("text"), str) or not segment["text"].strip():
                errors.append(f"segments[{i}].text must be a non-empty string")
        return errors

    def execute(
        self,
        context: ProcessContext,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProcessOutcome:
        generator = context.services.require("embedding_generator")
        segments = context.inputs["segments"]
        purpose = context.get_input("purpose")

        progress = ProcessProgress(total_count=len(segments))
        records: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        for index, segment in enumerate(segments):
            if cancel_event is not None and cancel_event.is_set():
                raise ExecutionCancelledError(
                    f"Cancelled after {index} of {len(segments)} segments"
                )

            segment_id = segment["segment_id"]
            progress.current_item = segment_id
            progress.current_index = index
            context.report_progress(progress)

            # Plain segments are embedded as-is so raw-text queries match them
            segment_type = segment.get("segment_type")
            embed_context = None
            if purpose or segment_type:
                embed_context = {"purpose": purpose, "segment_type": segment_type}

            try:
                record = generator.generate_for_segment(
                    tenant_id=context.tenant_id,
                    segment_id=segment_id,
                    text=segment["text"],
                    journey_id=context.journey_id,
                    context=embed_context,
                )
            except VectorError as e:
                logger.warning(
                    f"Failed to embed segment {segment_id}: {e}",
                    extra=context.get_log_context(),
                )
                progress.failed_count += 1
                errors.append({"segment_id": segment_id, "error": str(e)})
                continue

            progress.processed_count += 1
            records.append({
                "segment_id": segment_id,
                "index_id": record.index_id,
                "dimension": record.dimension,
                "model_name": record.model_name,
            })

        progress.current_index = len(segments)
        progress.status_message = "done"
        context.report_progress(progress)

        metadata = {"model_name": generator.model_name, "errors": errors}
        if not records:
            return ProcessOutcome.failure(
                f"No segments embedded ({len(errors)} failed)", metadata=metadata
            )

        logger.info(
            f"Embedded {len(records)} segment(s), {len(errors)} failed",
            extra=context.get_log_context(),
        )
        return ProcessOutcome.ok(
            {"embedded": len(records), "failed": len(errors), "records": records},
            metadata=metadata,
        )
