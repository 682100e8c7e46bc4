"""
focussync/llm/ollama_adapter.py
Ollama backend adapter. Ollama runs locally next to the server, so no
usage data leaves the machine.
Supports any model pulled via `ollama pull <model>`.
"""

import json
import logging
import urllib.error
import urllib.request
from typing import List, Optional

from focussync.llm.base import AnalysisAdapter, parse_analysis_response
from focussync.models.record import AnalysisResult, DailyStats

logger = logging.getLogger(__name__)


class OllamaAdapter(AnalysisAdapter):

    def __init__(
        self,
        model:       str   = 'llama3.1:8b',
        host:        str   = 'http://localhost:11434',
        timeout_sec: int   = 120,
        temperature: float = 0.3,
    ):
        self.model       = model
        self.host        = host.rstrip('/')
        self.timeout_sec = timeout_sec
        self.temperature = temperature

    # ── AVAILABILITY CHECK ───────────────────────────────────
    def is_available(self) -> bool:
        """Ping Ollama and confirm the configured model is pulled."""
        models = self.list_available_models()
        if models is None:
            return False

        # Exact match or family prefix ("llama3.1" matches "llama3.1:8b")
        available = any(
            m == self.model or m.startswith(self.model.split(':')[0])
            for m in models
        )
        if not available:
            logger.warning(
                f"Model '{self.model}' not found in Ollama. "
                f"Available: {models}. Run: ollama pull {self.model}"
            )
        return available

    # ── ANALYSIS ─────────────────────────────────────────────
    def analyze(self, date: str, stats: DailyStats) -> Optional[AnalysisResult]:
        payload = json.dumps({
            'model':  self.model,
            'prompt': self.build_prompt(date, stats),
            'stream': False,
            'options': {
                'temperature': self.temperature,
                'num_predict': 800,
            },
            'format': 'json',
        }).encode('utf-8')

        try:
            req = urllib.request.Request(
                f"{self.host}/api/generate",
                data    = payload,
                headers = {'Content-Type': 'application/json'},
                method  = 'POST',
            )
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                data = json.loads(resp.read().decode('utf-8'))

            text = data.get('response', '').strip()
            return parse_analysis_response(text, model=self.model)

        except urllib.error.URLError as e:
            logger.error(f"Ollama request failed: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Unusable analysis response for {date}: {e}")
            return None
        except Exception as e:
            logger.error(f"Ollama analyze error: {e}")
            return None

    # ── MODEL HELPERS ────────────────────────────────────────
    def list_available_models(self) -> Optional[List[str]]:
        """Locally pulled model names; None when Ollama is unreachable."""
        try:
            req = urllib.request.Request(f"{self.host}/api/tags", method='GET')
            with urllib.request.urlopen(req, timeout=5) as resp:
                data = json.loads(resp.read().decode())
            return [m['name'] for m in data.get('models', [])]
        except urllib.error.URLError:
            logger.warning(f"Ollama not reachable at {self.host}")
            return None
        except Exception as e:
            logger.warning(f"Ollama availability check failed: {e}")
            return None
