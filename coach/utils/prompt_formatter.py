"""
Prompt Formatter - wraps suggestion prompts in the model's instruction format

Priority:
1. Tokenizer chat template (when the tokenizer ships one)
2. Manual instruction tags for known model families
3. Plain prompt
"""

import logging

logger = logging.getLogger(__name__)


_INST = "[INST] {prompt} [/INST]"

MANUAL_FORMATS = {
    "mistral": _INST,
    "mixtral": _INST,
    "llama-2": _INST,
    "llama-3": (
        "<|begin_of_text|><|start_header_id|>user<|end_header_id|>\n\n{prompt}<|eot_id|>"
        "<|start_header_id|>assistant<|end_header_id|>\n\n"
    ),
    "zephyr": "<|user|>\n{prompt}\n<|assistant|>\n",
    "phi": "<|user|>\n{prompt}<|end|>\n<|assistant|>\n",
}

# Checked in order, most specific first
_FAMILY_MARKERS = (
    ("llama-3", ("llama-3", "llama3")),
    ("llama-2", ("llama-2", "llama2", "llama")),
    ("mixtral", ("mixtral",)),
    ("mistral", ("mistral",)),
    ("zephyr", ("zephyr",)),
    ("phi", ("phi",)),
)


def detect_model_family(model_name: str) -> str:
    """
    Examples:
        >>> detect_model_family("mistralai/Mistral-7B-Instruct-v0.2")
        'mistral'
        >>> detect_model_family("gpt2")
        'generic'
    """
    name = model_name.lower()
    for family, markers in _FAMILY_MARKERS:
        if any(marker in name for marker in markers):
            return family
    return "generic"


class PromptFormatter:
    """Format prompts for a specific model"""

    def __init__(self, model_name: str, tokenizer=None):
        self.model_name = model_name
        self.tokenizer = tokenizer
        self.model_family = detect_model_family(model_name)
        self.has_chat_template = getattr(tokenizer, 'chat_template', None) is not None

        if self.has_chat_template:
            logger.info(f"Using tokenizer chat template for {model_name}")
        elif self.model_family in MANUAL_FORMATS:
            logger.info(f"Using manual formatting for {self.model_family} family")
        else:
            logger.warning(f"No chat template or known format for {model_name}; prompts sent as-is")

    def format_instruction(self, prompt: str) -> str:
        if self.has_chat_template:
            try:
                return self.tokenizer.apply_chat_template(
                    [{"role": "user", "content": prompt}],
                    tokenize=False,
                    add_generation_prompt=True
                )
            except Exception as e:
                logger.warning(f"Chat template failed ({e}); falling back to manual formatting")

        template = MANUAL_FORMATS.get(self.model_family)
        if template is None:
            return prompt
        return template.format(prompt=prompt)

    def get_info(self) -> dict:
        if self.has_chat_template:
            method = "tokenizer_template"
        elif self.model_family in MANUAL_FORMATS:
            method = "manual"
        else:
            method = "none"
        return {
            "model_name": self.model_name,
            "model_family": self.model_family,
            "formatting_method": method
        }
