"""
HuggingFace Client - local causal LM behind LLMSuggestionProvider

The provider only needs three things from a model: is_loaded(),
generate(prompt, max_tokens, temperature) -> str, and a short info dict
for startup logs. Loading is split into small helpers so each failure
is logged where it happens.

generate() is blocking; the provider calls it through asyncio.to_thread.
"""

import logging
from typing import Any, Dict, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer, BitsAndBytesConfig

from coach.utils.prompt_formatter import PromptFormatter

logger = logging.getLogger(__name__)

DEVICE_CUDA = "cuda"


def quantization_for(device: str, load_in_4bit: bool) -> Optional[BitsAndBytesConfig]:
    """NF4 config on CUDA; None on CPU or when quantization is off"""
    if device != DEVICE_CUDA or not load_in_4bit:
        return None
    return BitsAndBytesConfig(
        load_in_4bit=True,
        bnb_4bit_quant_type="nf4",
        bnb_4bit_compute_dtype=torch.bfloat16,
        bnb_4bit_use_double_quant=True
    )


def sampling_kwargs(temperature: float) -> Dict[str, Any]:
    """Greedy decoding at temperature 0, sampling above it"""
    if temperature > 0:
        return {"do_sample": True, "temperature": temperature}
    return {"do_sample": False}


def _load_tokenizer(model_name: str):
    tokenizer = AutoTokenizer.from_pretrained(model_name)
    # Suggestion prompts are single sequences, but generate() still wants a pad id
    if tokenizer.pad_token is None and tokenizer.eos_token is not None:
        tokenizer.pad_token = tokenizer.eos_token
    return tokenizer


def _load_model(model_name: str, device: str, quantization_config):
    on_cuda = device == DEVICE_CUDA
    model = AutoModelForCausalLM.from_pretrained(
        model_name,
        quantization_config=quantization_config,
        device_map="auto" if on_cuda else None,
        torch_dtype=torch.bfloat16 if on_cuda else torch.float32
    )
    model.eval()
    return model


class HuggingFaceClient:
    """Blocking text generation for suggestion prompts"""

    def __init__(
        self,
        model_name: str,
        load_in_4bit: bool = True,
        device: str = DEVICE_CUDA,
        auto_format: bool = True
    ) -> None:
        """
        Args:
            model_name: HuggingFace model identifier
            load_in_4bit: NF4 quantization (CUDA only)
            device: "cuda" or "cpu"
            auto_format: Wrap prompts with PromptFormatter before tokenizing

        Raises:
            RuntimeError: If CUDA is requested but not available
            Exception: Whatever transformers raises while loading
        """
        if device == DEVICE_CUDA and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available")

        self.model_name = model_name
        self.device = device

        logger.info(f"Loading suggestion model {model_name} on {device} (4bit={load_in_4bit})")

        try:
            self.tokenizer = _load_tokenizer(model_name)
        except Exception as e:
            logger.error(f"Tokenizer load failed for {model_name}: {e}")
            raise

        try:
            self.model = _load_model(model_name, device, quantization_for(device, load_in_4bit))
        except Exception as e:
            logger.error(f"Model load failed for {model_name}: {type(e).__name__} - {e}")
            raise

        self.formatter = PromptFormatter(model_name, self.tokenizer) if auto_format else None

        if device == DEVICE_CUDA:
            logger.info(f"GPU memory after load: {torch.cuda.memory_allocated() / 1e9:.2f}GB allocated")

    def is_loaded(self) -> bool:
        return self.model is not None and self.tokenizer is not None

    def generate(self, prompt: str, max_tokens: int = 512, temperature: float = 0.8) -> str:
        """
        Complete a suggestion prompt.

        Returns:
            str: Decoded new tokens only (the prompt is not echoed)

        Raises:
            RuntimeError: If the model is not loaded
        """
        if not self.is_loaded():
            raise RuntimeError("Model not loaded")

        if self.formatter is not None:
            prompt = self.formatter.format_instruction(prompt)

        encoded = self.tokenizer(prompt, return_tensors="pt")
        if self.device == DEVICE_CUDA:
            encoded = encoded.to(DEVICE_CUDA)
        prompt_length = encoded.input_ids.shape[1]

        with torch.no_grad():
            output_ids = self.model.generate(
                encoded.input_ids,
                attention_mask=encoded.attention_mask,
                max_new_tokens=max_tokens,
                pad_token_id=self.tokenizer.pad_token_id,
                **sampling_kwargs(temperature)
            )

        completion = self.tokenizer.decode(output_ids[0][prompt_length:], skip_special_tokens=True)
        logger.debug(f"Generated {output_ids.shape[1] - prompt_length} tokens for a {prompt_length}-token prompt")
        return completion

    def get_model_info(self) -> Dict[str, Any]:
        info = {
            "model_name": self.model_name,
            "device": self.device,
            "is_loaded": self.is_loaded()
        }
        if self.formatter is not None:
            info["formatter"] = self.formatter.get_info()
        return info
