from __future__ import annotations

from essaycoach.strategies.base import BaseFeedbackStrategy


class DoubaoFeedbackStrategy(BaseFeedbackStrategy):
    service_name = "doubao"
    default_base_url = "https://ark.cn-beijing.volces.com/api/v3"
    default_model = "doubao-turbo"


class KimiFeedbackStrategy(BaseFeedbackStrategy):
    service_name = "kimi"
    default_base_url = "https://api.moonshot.cn/v1"
    default_model = "moonshot-v1-8k"


class TongyiFeedbackStrategy(BaseFeedbackStrategy):
    service_name = "tongyi"
    default_base_url = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    default_model = "qwen-plus"
