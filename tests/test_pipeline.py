"""Tests for the end-to-end question answering pipeline."""

import asyncio
import math
import time

import numpy as np
import pytest

from onnx_extractive_qa.models import pipeline as pipeline_module
from onnx_extractive_qa.models.answer import NO_ANSWER_TEXT, AnswerResult
from onnx_extractive_qa.models.engine import InferenceInvoker, ModelOutputs
from onnx_extractive_qa.models.pipeline import InferenceRequest, perform_qa_inference
from onnx_extractive_qa.data.tokenization import TokenizedInput
from onnx_extractive_qa.utils.cache import ResourceCache
from onnx_extractive_qa.utils.config import Config
from onnx_extractive_qa.utils.errors import (
    InferenceError,
    InferenceTimeout,
    TokenizationError,
)

from conftest import (
    EVENT_CONTEXT,
    EVENT_QUESTION,
    FakeSession,
    crossed_logits,
    span_logits,
)


class TestQAInferencePipeline:
    """Tests for QAInferencePipeline."""

    def test_event_example(self, make_pipeline, event_session):
        pipeline = make_pipeline(event_session)

        result = asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

        assert "November 15" in result.answer
        assert "2024" in result.answer
        assert math.isfinite(result.score)
        assert result.score == pytest.approx((8.0 + 7.0) / 2)
        assert not result.is_sentinel

    def test_feeds_are_int64_with_batch_dimension(self, make_pipeline, event_session):
        pipeline = make_pipeline(event_session)

        asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

        output_names, feeds = event_session.calls[0]
        assert output_names == ['start_logits', 'end_logits']
        assert set(feeds) == {'input_ids', 'attention_mask'}
        for name in ('input_ids', 'attention_mask'):
            assert feeds[name].dtype == np.int64
            assert feeds[name].ndim == 2
            assert feeds[name].shape[0] == 1
        assert feeds['input_ids'].shape == feeds['attention_mask'].shape

    def test_token_type_ids_fed_when_declared(self, make_pipeline, qa_tokenizer):
        session = FakeSession(
            span_logits(qa_tokenizer, "November", "2024"),
            input_names=("input_ids", "attention_mask", "token_type_ids"),
        )
        pipeline = make_pipeline(session)

        asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

        _, feeds = session.calls[0]
        assert feeds['token_type_ids'].dtype == np.int64
        assert feeds['token_type_ids'].shape == feeds['input_ids'].shape

    def test_idempotent_with_warm_cache(self, make_pipeline, event_session):
        loads = []

        def session_factory(path):
            loads.append(path)
            return event_session

        pipeline = make_pipeline(session_factory=session_factory)

        async def run():
            first = await pipeline(EVENT_QUESTION, EVENT_CONTEXT)
            second = await pipeline(EVENT_QUESTION, EVENT_CONTEXT)
            return first, second

        first, second = asyncio.run(run())

        assert first == second
        assert first.score == second.score
        assert len(loads) == 1

    def test_concurrent_requests_load_resources_once(self, make_pipeline, qa_tokenizer, event_session):
        tokenizer_loads = []
        session_loads = []

        def tokenizer_loader(name):
            tokenizer_loads.append(name)
            time.sleep(0.05)
            return qa_tokenizer

        def session_factory(path):
            session_loads.append(path)
            time.sleep(0.05)
            return event_session

        pipeline = make_pipeline(session_factory=session_factory, tokenizer_loader=tokenizer_loader)

        async def run():
            return await asyncio.gather(*[pipeline(EVENT_QUESTION, EVENT_CONTEXT) for _ in range(5)])

        results = asyncio.run(run())

        assert len(tokenizer_loads) == 1
        assert len(session_loads) == 1
        assert all(result == results[0] for result in results)

    def test_crossed_logits_use_fallback_and_raw_score(self, make_pipeline, qa_tokenizer):
        session = FakeSession(crossed_logits)
        pipeline = make_pipeline(session)

        result = asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

        assert not result.is_sentinel
        assert "Tokyo" in result.answer
        assert result.score == pytest.approx((6.0 + 5.0) / 2)

    def test_single_token_answer_with_flag(self, make_pipeline, qa_tokenizer):
        session = FakeSession(span_logits(qa_tokenizer, "Tokyo", "Tokyo"))
        config = Config.from_dict({
            'model': {'name': 'test-tokenizer', 'path': 'qa-model.onnx'},
            'span': {'allow_single_token': True},
        })
        pipeline = make_pipeline(session, config=config)

        result = asyncio.run(pipeline("Where is the event held?", EVENT_CONTEXT))

        assert result.answer == "Tokyo"
        assert result.score == pytest.approx(7.5)

    def test_empty_question_and_context(self, make_pipeline):
        def session_factory(path):
            raise AssertionError("model must not be loaded for empty input")

        pipeline = make_pipeline(session_factory=session_factory)

        result = asyncio.run(pipeline("", ""))

        assert result == AnswerResult(answer=NO_ANSWER_TEXT, score=0.0)

    def test_max_length_one(self, make_pipeline, event_session):
        pipeline = make_pipeline(event_session)

        result = asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT, max_length=1))

        assert result.is_sentinel
        assert event_session.calls == []

    def test_no_valid_span_gives_sentinel(self, make_pipeline):
        def last_start(input_ids):
            start = np.zeros(len(input_ids))
            end = np.zeros(len(input_ids))
            start[-1] = 9.0
            end[1] = 9.0
            return start, end

        pipeline = make_pipeline(FakeSession(last_start))

        result = asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

        assert result.is_sentinel

    def test_span_over_special_tokens_gives_sentinel(self, make_pipeline):
        def leading_specials(input_ids):
            # With an empty question the first two positions are [CLS] [SEP].
            start = np.zeros(len(input_ids))
            end = np.zeros(len(input_ids))
            start[0] = 9.0
            end[1] = 9.0
            return start, end

        session = FakeSession(leading_specials)
        pipeline = make_pipeline(session)

        result = asyncio.run(pipeline("", EVENT_CONTEXT))

        assert len(session.calls) == 1
        assert result.is_sentinel

    def test_request_defaults_come_from_config(self, make_pipeline, event_session, test_config):
        pipeline = make_pipeline(event_session)

        request = pipeline.build_request(EVENT_QUESTION, EVENT_CONTEXT)

        assert request == InferenceRequest(
            question=EVENT_QUESTION,
            context=EVENT_CONTEXT,
            model_id=test_config.get('model.name'),
            model_path=test_config.get('model.path'),
            max_length=test_config.get('model.max_seq_length'),
        )

    def test_non_positive_max_length_rejected(self, make_pipeline, event_session):
        pipeline = make_pipeline(event_session)

        with pytest.raises(ValueError):
            pipeline.build_request(EVENT_QUESTION, EVENT_CONTEXT, max_length=0)


class TestErrorPropagation:
    """Resource and engine failures propagate as exceptions."""

    def test_tokenizer_load_failure(self, make_pipeline, event_session):
        def tokenizer_loader(name):
            raise OSError("not found")

        pipeline = make_pipeline(event_session, tokenizer_loader=tokenizer_loader)

        with pytest.raises(TokenizationError):
            asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

    def test_model_load_failure(self, make_pipeline):
        def session_factory(path):
            raise FileNotFoundError(path)

        pipeline = make_pipeline(session_factory=session_factory)

        with pytest.raises(InferenceError, match="Failed to load model"):
            asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

    def test_engine_failure(self, make_pipeline):
        def broken(input_ids):
            raise RuntimeError("[ONNXRuntimeError] : 2 : INVALID_ARGUMENT")

        pipeline = make_pipeline(FakeSession(broken))

        with pytest.raises(InferenceError, match="Model execution failed"):
            asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

    def test_shape_mismatch(self, make_pipeline):
        def short_logits(input_ids):
            return np.zeros(len(input_ids) - 1), np.zeros(len(input_ids) - 1)

        pipeline = make_pipeline(FakeSession(short_logits))

        with pytest.raises(InferenceError, match="shape"):
            asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

    def test_missing_model_inputs(self, make_pipeline, event_session):
        event_session.input_names = ["input_ids"]
        pipeline = make_pipeline(event_session)

        with pytest.raises(InferenceError, match="attention_mask"):
            asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

    def test_inference_timeout(self, make_pipeline, event_session):
        def slow(input_ids):
            time.sleep(0.3)
            return np.zeros(len(input_ids)), np.zeros(len(input_ids))

        config = Config.from_dict({
            'model': {'name': 'test-tokenizer', 'path': 'qa-model.onnx'},
            'engine': {'inference_timeout': 0.05},
        })
        pipeline = make_pipeline(FakeSession(slow), config=config)

        with pytest.raises(InferenceTimeout) as exc_info:
            asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))

        assert exc_info.value.timeout is True
        assert isinstance(exc_info.value, InferenceError)

    def test_model_load_timeout(self, make_pipeline, event_session):
        def session_factory(path):
            time.sleep(0.5)
            return event_session

        config = Config.from_dict({
            'model': {'name': 'test-tokenizer', 'path': 'qa-model.onnx'},
            'engine': {'load_timeout': 0.05},
        })
        pipeline = make_pipeline(session_factory=session_factory, config=config)

        with pytest.raises(InferenceTimeout):
            asyncio.run(pipeline(EVENT_QUESTION, EVENT_CONTEXT))


class TestInferenceInvoker:
    """Tests for InferenceInvoker."""

    def test_infer_strips_batch_dimension(self, event_session, qa_tokenizer):
        invoker = InferenceInvoker(cache=ResourceCache(), session_factory=lambda path: event_session)
        encoding = qa_tokenizer(EVENT_QUESTION, EVENT_CONTEXT)
        tokenized = TokenizedInput(
            input_ids=encoding['input_ids'],
            attention_mask=encoding['attention_mask'],
        )

        outputs = asyncio.run(invoker.infer(tokenized, "qa-model.onnx"))

        assert isinstance(outputs, ModelOutputs)
        assert outputs.start_logits.shape == (len(tokenized),)
        assert outputs.end_logits.shape == (len(tokenized),)
        assert len(outputs) == len(tokenized)

    def test_empty_input_rejected(self, event_session):
        invoker = InferenceInvoker(cache=ResourceCache(), session_factory=lambda path: event_session)

        with pytest.raises(InferenceError):
            asyncio.run(invoker.infer(TokenizedInput(input_ids=[], attention_mask=[]), "qa-model.onnx"))

    def test_from_config(self, test_config):
        invoker = InferenceInvoker.from_config(test_config)

        assert invoker.providers == ['CPUExecutionProvider']
        assert invoker.inference_timeout == test_config.get('engine.inference_timeout')
        assert invoker.load_timeout == test_config.get('engine.load_timeout')


class TestPerformQAInference:
    """Tests for the module-level entry point."""

    def test_uses_default_pipeline(self, make_pipeline, event_session, monkeypatch):
        monkeypatch.setattr(pipeline_module, '_default_pipeline', make_pipeline(event_session))

        result = asyncio.run(perform_qa_inference(EVENT_QUESTION, EVENT_CONTEXT))

        assert "2024" in result.answer

    def test_empty_inputs_return_sentinel(self, make_pipeline, event_session, monkeypatch):
        monkeypatch.setattr(pipeline_module, '_default_pipeline', make_pipeline(event_session))

        result = asyncio.run(perform_qa_inference("", ""))

        assert result.answer == NO_ANSWER_TEXT
        assert result.score == 0
