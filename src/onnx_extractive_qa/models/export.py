"""Export of a Hugging Face question answering checkpoint to ONNX."""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import torch
import torch.nn as nn
from transformers import AutoModelForQuestionAnswering, AutoTokenizer, PreTrainedModel

from .engine import INPUT_NAMES, OUTPUT_NAMES


class QAExportWrapper(nn.Module):
    """Exposes a QA model as ``(input_ids, attention_mask) -> (start_logits, end_logits)``."""

    def __init__(self, qa_model: PreTrainedModel) -> None:
        super().__init__()
        self.qa_model = qa_model

    def forward(
        self,
        input_ids: torch.Tensor,
        attention_mask: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        outputs = self.qa_model(input_ids=input_ids, attention_mask=attention_mask)
        return outputs.start_logits, outputs.end_logits


def export_qa_model(
    model_name: str,
    output_path: Union[str, Path],
    opset_version: int = 14,
    sample_question: str = "What is exported?",
    sample_context: Optional[str] = None
) -> Path:
    """Export ``model_name`` to an ONNX file the inference pipeline can load.

    The graph takes int64 ``input_ids`` and ``attention_mask`` and returns
    ``start_logits`` and ``end_logits``, with dynamic batch and sequence axes.

    Args:
        model_name: Hub name or local directory of a QA checkpoint.
        output_path: Destination ``.onnx`` file.
        opset_version: ONNX opset to target.
        sample_question: Question used to trace the graph.
        sample_context: Context used to trace the graph.

    Returns:
        Path of the written model.
    """
    logger = logging.getLogger(__name__)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Loading {model_name} for export")
    tokenizer = AutoTokenizer.from_pretrained(model_name)
    qa_model = AutoModelForQuestionAnswering.from_pretrained(model_name)
    qa_model.eval()

    sample = tokenizer(
        sample_question,
        sample_context or "The model is exported to the ONNX format.",
        return_tensors='pt'
    )
    dummy_inputs = (
        sample['input_ids'].to(torch.int64),
        sample['attention_mask'].to(torch.int64),
    )

    dynamic_axes = {name: {0: 'batch', 1: 'sequence'} for name in list(INPUT_NAMES) + OUTPUT_NAMES}

    with torch.no_grad():
        torch.onnx.export(
            QAExportWrapper(qa_model),
            dummy_inputs,
            str(output_path),
            input_names=list(INPUT_NAMES),
            output_names=list(OUTPUT_NAMES),
            dynamic_axes=dynamic_axes,
            opset_version=opset_version,
            dynamo=False,
        )

    logger.info(f"Exported {model_name} to {output_path}")
    return output_path
