"""
Amazon Bedrock text generation with bounded timeouts and opt-in retries.
"""

import random
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .base_llm import TextGenerator
from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = 'あなたは介護施設のケア記録を扱うアシスタントです。'


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockLLM(TextGenerator):
    """Text generation over the Bedrock Converse streaming API.

    A read timeout is a failure (BedrockLLMError), not a partial answer.
    Only ``retry_attempts`` above 1 turns on retries.
    """

    def __init__(self, config: BedrockLLMConfig):
        """
        Args:
            config: BedrockLLMConfig with model, limits and timeouts
        """
        self.config = config
        self.model_id = config.model_id
        self.bedrock_runtime = boto3.client('bedrock-runtime',
                                            region_name=config.region,
                                            config=BotoConfig(connect_timeout=config.connect_timeout,
                                                              read_timeout=config.read_timeout,
                                                              retries={'max_attempts': 0}))
        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id} '
                    f'(read timeout: {config.read_timeout}s, attempts: {max(1, config.retry_attempts)})')

    def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Generate text for a single user prompt."""
        messages = [{'role': 'user', 'content': [{'text': prompt}]}]
        return self.generate_response(messages, system_prompt or DEFAULT_SYSTEM_PROMPT)

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None) -> str:
        """
        Run one conversation turn.

        Args:
            messages: Conversation in Bedrock Converse format
            system_prompt: System prompt for the conversation
            max_tokens: Generation limit (config default if None)
            temperature: Sampling temperature (config default if None)

        Returns:
            Generated text

        Raises:
            BedrockLLMError: If every attempt fails or times out
        """
        inference_config = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
        }
        attempts = max(1, self.config.retry_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return self._converse(messages, system_prompt, inference_config)
            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt}/{attempts} failed: {e}')
                if attempt == attempts:
                    raise BedrockLLMError(f'Bedrock LLM failed after {attempts} attempt(s): {e}')
                # Exponential backoff with jitter
                time.sleep(self.config.retry_delay * (2**(attempt - 1)) + random.uniform(0, 1))

        raise BedrockLLMError('Bedrock LLM was not attempted')

    def _converse(self, messages: List[Dict[str, Any]], system_prompt: str, inference_config: Dict[str, Any]) -> str:
        response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                        messages=messages,
                                                        system=[{'text': system_prompt}],
                                                        inferenceConfig=inference_config)
        chunks = []
        for event in response.get('stream') or []:
            if 'contentBlockDelta' in event:
                chunks.append(event['contentBlockDelta']['delta'].get('text', ''))
            elif 'metadata' in event:
                usage = event['metadata'].get('usage', {})
                latency = event['metadata'].get('metrics', {}).get('latencyMs')
                logger.debug(f"Bedrock usage: in={usage.get('inputTokens')} out={usage.get('outputTokens')} "
                             f'latency={latency}ms')
        return ''.join(chunks)

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            reply = self.generate_response([{'role': 'user', 'content': [{'text': 'Hi'}]}],
                                           "Respond with just 'OK'.",
                                           max_tokens=10,
                                           temperature=0.0)
            return bool(reply.strip())
        except BedrockLLMError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
