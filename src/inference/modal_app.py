"""Modal deployment of the open-weights multimodal model on an A10G GPU.

Deploy with:
    uv run modal deploy src/inference/modal_app.py
"""

import os
from pathlib import Path

import modal

from src.inference.constants import (
    MAX_NEW_TOKENS_DEFAULT,
    MAX_NEW_TOKENS_TASK,
    MODEL_ID,
)
from src.logger import get_logger, log_timing

APP_NAME = "labflow-inference"
CLS_NAME = "InferenceModel"
APP_PATH = Path("/root/app")

app = modal.App(APP_NAME)
logger = get_logger(__name__)

image = (
    modal.Image.debian_slim(python_version="3.11")
    .pip_install("uv")
    .workdir(APP_PATH)
    .add_local_file("pyproject.toml", str(APP_PATH / "pyproject.toml"), copy=True)
    .add_local_dir("src", str(APP_PATH / "src"), copy=True)
    .env({"UV_PROJECT_ENVIRONMENT": "/usr/local"})
    .run_commands("uv pip install --system '.[local]'")
)


@app.cls(
    image=image,
    gpu="A10G",
    timeout=300,
    secrets=[modal.Secret.from_name("huggingface")],
    min_containers=1,
)
class InferenceModel:
    """Warm-started container so the model is not reloaded on each call."""

    @modal.enter()
    def setup(self):
        import torch
        from transformers import AutoModelForImageTextToText, AutoProcessor

        hf_token = os.environ.get("HF_TOKEN")
        logger.info("Loading model in Modal: %s", MODEL_ID)
        with log_timing(logger, "modal.setup.load_processor"):
            self.processor = AutoProcessor.from_pretrained(
                MODEL_ID, token=hf_token, use_fast=True
            )
        with log_timing(logger, "modal.setup.load_model"):
            self.model = AutoModelForImageTextToText.from_pretrained(
                MODEL_ID,
                token=hf_token,
                dtype=torch.bfloat16,
                device_map="auto",
            )
        logger.info("Modal model ready")

    def _generate(self, messages: list[dict], max_new_tokens: int) -> str:
        import torch

        inputs = self.processor.apply_chat_template(
            messages,
            add_generation_prompt=True,
            tokenize=True,
            return_dict=True,
            return_tensors="pt",
        ).to(self.model.device, dtype=torch.bfloat16)

        with torch.inference_mode():
            with log_timing(logger, "modal.generate"):
                outputs = self.model.generate(
                    **inputs,
                    max_new_tokens=max_new_tokens,
                    do_sample=False,
                )

        input_len = inputs["input_ids"].shape[-1]
        output_tokens = outputs[0].shape[-1] - input_len
        logger.info("Modal tokens (input=%d, output=%d)", input_len, max(output_tokens, 0))
        response = self.processor.decode(outputs[0][input_len:], skip_special_tokens=True)
        logger.debug("Raw response (head): %s", response[:500])
        return response

    @modal.method()
    def extract_from_image(
        self, image_bytes: bytes, prompt: str, max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT
    ) -> str:
        """
        Run a prompt over a strip photo or slide image.

        Args:
            image_bytes: Raw bytes of the fetched attachment
            prompt: Task prompt requesting JSON output
            max_new_tokens: Generation limit (task-specific)

        Returns:
            Model response (expected to be a JSON string)
        """
        import io

        from PIL import Image

        from src.prompts import SYSTEM_INSTRUCTION

        logger.info(
            "Modal extract_from_image start (bytes=%d, max_new_tokens=%d)",
            len(image_bytes),
            max_new_tokens,
        )
        pil_image = Image.open(io.BytesIO(image_bytes)).convert("RGB")
        messages = [
            {"role": "system", "content": [{"type": "text", "text": SYSTEM_INSTRUCTION}]},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image", "image": pil_image},
                ],
            },
        ]
        return self._generate(messages, max_new_tokens)

    @modal.method()
    def generate_from_text(
        self, prompt: str, max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT
    ) -> str:
        """Text-only generation for parser and validator prompts."""
        from src.prompts import SYSTEM_INSTRUCTION

        messages = [
            {"role": "system", "content": [{"type": "text", "text": SYSTEM_INSTRUCTION}]},
            {"role": "user", "content": [{"type": "text", "text": prompt}]},
        ]
        return self._generate(messages, max_new_tokens)


@app.local_entrypoint()
def main(image_path: str = ""):
    """Smoke-test the deployed class with a strip photo."""
    from src.prompts import DEFAULT_COLOR_CHOICES, VISION_COLOR_PROMPT

    if not image_path or not Path(image_path).exists():
        print(f"Sample image not found at: {image_path!r}")
        return

    model = InferenceModel()
    result = model.extract_from_image.remote(
        Path(image_path).read_bytes(),
        VISION_COLOR_PROMPT.format(choices=", ".join(DEFAULT_COLOR_CHOICES)),
        max_new_tokens=MAX_NEW_TOKENS_TASK,
    )
    print("\n--- Model Response ---")
    print(result)
    print("----------------------")
