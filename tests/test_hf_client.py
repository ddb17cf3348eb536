"""
Tests for HuggingFaceClient with mocked tokenizer and model (no download)
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from unittest.mock import MagicMock, patch

import pytest
import torch

from coach.utils.hf_client import HuggingFaceClient, quantization_for, sampling_kwargs


MODEL_NAME = "mistralai/Mistral-7B-Instruct-v0.2"


def make_tokenizer():
    tokenizer = MagicMock()
    tokenizer.chat_template = None
    tokenizer.pad_token = None
    tokenizer.eos_token = "</s>"
    tokenizer.pad_token_id = 2
    tokenizer.return_value = MagicMock(
        input_ids=torch.tensor([[5, 6, 7]]),
        attention_mask=torch.tensor([[1, 1, 1]])
    )
    tokenizer.decode.return_value = "1. Title: Rivers as Teachers"
    return tokenizer


def make_model():
    model = MagicMock()
    model.generate.return_value = torch.tensor([[5, 6, 7, 8, 9]])
    return model


@pytest.fixture
def loaded():
    tokenizer = make_tokenizer()
    model = make_model()
    with patch('coach.utils.hf_client.AutoTokenizer') as auto_tokenizer, \
            patch('coach.utils.hf_client.AutoModelForCausalLM') as auto_model:
        auto_tokenizer.from_pretrained.return_value = tokenizer
        auto_model.from_pretrained.return_value = model
        client = HuggingFaceClient(MODEL_NAME, load_in_4bit=False, device="cpu")
    return client, tokenizer, model


def test_load_sets_pad_token_and_eval(loaded):
    client, tokenizer, model = loaded

    assert client.is_loaded()
    assert tokenizer.pad_token == "</s>"
    model.eval.assert_called_once()


def test_generate_returns_only_new_tokens(loaded):
    client, tokenizer, model = loaded

    text = client.generate("Suggest ideas", max_tokens=64, temperature=0.7)

    assert text == "1. Title: Rivers as Teachers"
    tokenizer.assert_called_once_with("[INST] Suggest ideas [/INST]", return_tensors="pt")

    kwargs = model.generate.call_args.kwargs
    assert kwargs['max_new_tokens'] == 64
    assert kwargs['do_sample'] is True
    assert kwargs['temperature'] == 0.7
    assert kwargs['pad_token_id'] == 2

    decoded_ids = tokenizer.decode.call_args.args[0]
    assert decoded_ids.tolist() == [8, 9]


def test_zero_temperature_is_greedy(loaded):
    client, _, model = loaded
    client.generate("Suggest ideas", temperature=0.0)

    kwargs = model.generate.call_args.kwargs
    assert kwargs['do_sample'] is False
    assert 'temperature' not in kwargs


def test_generate_requires_loaded_model(loaded):
    client, _, _ = loaded
    client.model = None

    with pytest.raises(RuntimeError):
        client.generate("Suggest ideas")


def test_model_info_reports_formatter(loaded):
    client, _, _ = loaded
    info = client.get_model_info()

    assert info['model_name'] == MODEL_NAME
    assert info['device'] == "cpu"
    assert info['formatter']['formatting_method'] == "manual"


def test_cuda_unavailable_fails_fast():
    with patch('coach.utils.hf_client.torch.cuda.is_available', return_value=False):
        with pytest.raises(RuntimeError):
            HuggingFaceClient(MODEL_NAME, device="cuda")


def test_quantization_only_on_cuda():
    assert quantization_for("cpu", True) is None
    assert quantization_for("cuda", False) is None


def test_sampling_kwargs():
    assert sampling_kwargs(0.5) == {"do_sample": True, "temperature": 0.5}
    assert sampling_kwargs(0) == {"do_sample": False}
