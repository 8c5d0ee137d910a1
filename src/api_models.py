import os
from abc import ABC, abstractmethod

from PIL import Image
import google.generativeai as genai

from errors import OcrFailure

gemini_api_key = os.environ.get("GEMINI_API_KEY")


class Model(ABC):
    def __init__(self, model_name):
        self.model_name = model_name

    @abstractmethod
    def call_model(self, user_prompt, system_prompt=None, image_paths=None):
        pass


def create_model(model_name, timeout=60):
    supported = {"gemini-2.0-flash", "gemini-flash-latest", "gemini-1.5-pro"}
    if model_name not in supported:
        raise NotImplementedError(f"Unsupported document OCR model: {model_name}")
    return GeminiModel(model_name, timeout=timeout)


class GeminiModel(Model):
    def __init__(self, model_name="gemini-2.0-flash", timeout=60):
        if not gemini_api_key:
            raise EnvironmentError("Set GEMINI_API_KEY before running batch validation.")

        genai.configure(api_key=gemini_api_key)
        super().__init__(model_name)
        self.timeout = timeout
        self.model = genai.GenerativeModel(self.model_name)

    def call_model(self, user_prompt, system_prompt=None, image_paths=None):
        parts = []
        if system_prompt:
            parts.append(system_prompt)
        parts.append(user_prompt)
        for path in image_paths or []:
            with Image.open(path) as img:
                if img.mode != "RGB":
                    img = img.convert("RGB")
                parts.append(img.copy())

        try:
            response = self.model.generate_content(parts, request_options={"timeout": self.timeout})
            return response.text
        except Exception as exc:
            # The SDK raises a mix of google.api_core and ValueError subclasses.
            raise OcrFailure(f"Gemini request failed: {exc}") from exc
