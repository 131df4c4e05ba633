"""
Prompt templates.

Fan-out prompts are bit-identical across models so their answers can be
compared; only the model id varies between calls.
"""

from typing import Sequence

from detect_cart.models import ParsedAnswer
from detect_cart.parser import NO_ANSWER_PLACEHOLDER

QUESTION = "分析 Shopify 購物車 HTML，判斷 subtotal element 有可能是哪個，給出 querySelector。"

ANALYSIS_SYSTEM_PROMPT = (
    "你是一位專業的 HTML 分析專家，擅長分析網頁結構並找出特定元素。"
    "請分析提供的 HTML 代碼，找出購物車小計(subtotal)元素，"
    "並給出一個能唯一定位該元素的 document.querySelector('…') 表達式。"
    "請盡量給出準確的結果，而不是基於html結構的選擇器。"
    "請在回答的最後加上一行純文字：output:document.querySelector('你認為最合適的選擇器')"
)

CONSENSUS_SYSTEM_PROMPT = (
    "你是一位專業的 HTML 分析專家，擅長分析網頁結構並找出特定元素。"
    "你的任務是綜合分析多個 AI 模型對同一問題的回答，找出最合理的解決方案。"
)


def build_analysis_prompt(simplified_html: str) -> str:
    return (
        "分析以下 Shopify 購物車 HTML，判斷 subtotal element 有可能是哪個，給出 querySelector：\n"
        f"```html\n{simplified_html}\n```"
    )


def build_consensus_prompt(simplified_html: str, answers: Sequence[ParsedAnswer]) -> str:
    """Arbiter prompt: every model's answer (or the placeholder), then the HTML."""
    blocks = "\n\n".join(
        f"模型 {a.model_display_name}：{a.extracted_selector or NO_ANSWER_PLACEHOLDER}"
        for a in answers
    )
    return (
        "我有多個 AI 模型對同一個問題的回答，請幫我綜合分析這些回答，找出最合理的解決方案。\n"
        f"問題是：{QUESTION}\n"
        "\n"
        "以下是各個模型的回答：\n"
        f"{blocks}\n"
        "\n"
        "以下是 HTML 內容：\n"
        f"{simplified_html}\n"
        "\n"
        "請綜合分析這些回答，給出：\n"
        "1. 最可能正確的 querySelector 選擇器\n"
        "2. 為什麼你認為這個選擇器是最合適的\n"
        "3. 如果有多個可能的選擇器，請列出並說明各自的優缺點\n"
        "\n"
        "請在回答的最後加上一行純文字：output:document.querySelector('你認為最合適的選擇器')"
    )
