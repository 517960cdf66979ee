# enrich_hub/language.py
"""
语言识别器。

优先使用平台自带的语言检测器（置信度高于 0.7 时直接采用），否则回退到基于
停用词频率的统计启发式算法。本模块从不抛出异常：任何输入都会得到一个结论。
"""

from __future__ import annotations

import re

import structlog

from enrich_hub.core.types import UNKNOWN_LANGUAGE, DetectionMethod, LanguageVerdict
from enrich_hub.platform import PlatformDetector, PlatformRuntime

logger = structlog.get_logger(__name__)

DEFAULT_SAMPLE_CHARS = 1000
HEURISTIC_THRESHOLD = 0.1
PLATFORM_THRESHOLD = 0.7
TIE_MARGIN = 0.05
TIE_BONUS = 0.1
_SCORE_WINDOW = 100

_NON_LETTERS = re.compile(r"[^a-zà-ÿ\s]")

STOP_WORDS: dict[str, frozenset[str]] = {
    "en": frozenset(
        """
        the be to of and in that have it for not on with he as you do at this
        but his by from they we say her she or an will my one all would there
        their what is are was were been has had can could should may might
        must shall when where which who how
        """.split()
    ),
    "es": frozenset(
        """
        el la de que en un ser se no haber por con su para como estar tener le
        lo todo pero más hacer poder decir este ir otro ese si me ya ver porque
        dar cuando él muy sin vez mucho saber qué sobre mi alguno mismo yo
        también hasta los las del una es al
        """.split()
    ),
    "fr": frozenset(
        """
        le de un être et en avoir que pour dans ce il qui ne sur se pas plus
        pouvoir par je avec tout faire son mettre autre on mais nous comme ou
        si leur dire elle devoir avant deux même prendre aussi celui donner
        bien où fois vous les des est sont une cette cet ces sans sous entre
        depuis pendant contre selon vers chez malgré afin alors donc car
        puisque quand lorsque ainsi déjà encore jamais toujours souvent
        beaucoup peu très trop assez
        """.split()
    ),
    "de": frozenset(
        """
        der die und in den von zu das mit sich des auf für ist im dem nicht ein
        eine als auch es an werden aus er hat dass sie nach wird bei einer um
        am sind noch wie einem über einen so zum war haben nur oder aber vor
        zur
        """.split()
    ),
    "pt": frozenset(
        """
        de que do da em um para com não uma os no se na por mais as dos como
        mas ao ele das seu sua ou quando muito nos já eu também só pelo pela
        até isso ela entre depois sem mesmo aos ter seus quem
        """.split()
    ),
    "it": frozenset(
        """
        di il un è per una in sono ho ha che non si la da lo con ma come questo
        qui quello lei lui mi io se molto anche solo cosa dove quando ora
        adesso perché noi voi loro tutto niente bene male grazie prego ciao sì
        """.split()
    ),
}

# 每种语言独有的冠词/虚词特征，仅用于打破得分接近的平局
SIGNATURES: dict[str, re.Pattern[str]] = {
    "en": re.compile(r"\b(the|and|of|is|are|was|were|which|would|this)\b", re.I),
    "es": re.compile(r"\b(el|los|las|del|una|está|también|muy|pero|porque)\b", re.I),
    "fr": re.compile(
        r"\b(les|des|est|sont|pour|avec|dans|sur|par|une|deux|trois|quatre|cinq)\b",
        re.I,
    ),
    "de": re.compile(r"\b(der|die|das|und|nicht|ist|mit|ein|eine|auch)\b", re.I),
    "pt": re.compile(r"\b(não|uma|do|da|dos|das|ao|pelo|pela|também)\b", re.I),
    "it": re.compile(r"\b(il|di|che|è|della|sono|gli|anche|questo|perché)\b", re.I),
}


def _tokenize(sample: str) -> list[str]:
    normalized = _NON_LETTERS.sub("", sample.lower())
    return [w for w in normalized.split() if len(w) > 1]


def _unknown(confidence: float = 0.0) -> LanguageVerdict:
    return LanguageVerdict(
        language_code=UNKNOWN_LANGUAGE,
        confidence=min(max(confidence, 0.0), 1.0),
        method=DetectionMethod.HEURISTIC,
    )


def _break_tie(sample: str, candidates: list[str]) -> str | None:
    """在得分接近的候选语言中，按特征正则的命中次数选出唯一胜者。"""
    hits = {lang: len(SIGNATURES[lang].findall(sample)) for lang in candidates}
    best = max(hits.values())
    if best == 0:
        return None
    winners = [lang for lang, n in hits.items() if n == best]
    return winners[0] if len(winners) == 1 else None


def identify_heuristic(
    sample: str,
    threshold: float = HEURISTIC_THRESHOLD,
    tie_margin: float = TIE_MARGIN,
) -> LanguageVerdict:
    """基于停用词频率的纯函数语言识别。"""
    words = _tokenize(sample)
    if not words:
        return _unknown()

    denominator = min(len(words), _SCORE_WINDOW)
    scores = {
        lang: sum(1 for w in words if w in stop_words) / denominator
        for lang, stop_words in STOP_WORDS.items()
    }
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    best_lang, best_score = ranked[0]

    if best_score < threshold:
        return _unknown(best_score)

    confidence = best_score
    runner_up_score = ranked[1][1]
    if best_score - runner_up_score < tie_margin:
        candidates = [lang for lang, s in ranked if best_score - s < tie_margin]
        winner = _break_tie(sample, candidates)
        if winner is not None:
            best_lang = winner
            confidence = best_score + TIE_BONUS
        logger.debug(
            "启发式语言检测出现平局", candidates=candidates, winner=winner
        )

    return LanguageVerdict(
        language_code=best_lang,
        confidence=min(confidence, 1.0),
        method=DetectionMethod.HEURISTIC,
    )


class LanguageIdentifier:
    """组合平台检测器与启发式算法的语言识别器。"""

    def __init__(
        self,
        platform: PlatformRuntime | None = None,
        *,
        heuristic_threshold: float = HEURISTIC_THRESHOLD,
        platform_threshold: float = PLATFORM_THRESHOLD,
        tie_margin: float = TIE_MARGIN,
    ):
        self._platform = platform
        self._detector: PlatformDetector | None = None
        self.heuristic_threshold = heuristic_threshold
        self.platform_threshold = platform_threshold
        self.tie_margin = tie_margin

    async def _get_detector(self) -> PlatformDetector | None:
        if self._detector is not None:
            return self._detector
        if self._platform is None:
            return None
        capability = await self._platform.detector_availability()
        if not capability.is_usable:
            return None
        self._detector = await self._platform.create_detector()
        return self._detector

    async def _identify_with_platform(self, sample: str) -> LanguageVerdict | None:
        try:
            detector = await self._get_detector()
            if detector is None:
                return None
            results = await detector.detect(sample)
        except Exception as e:
            logger.warning("平台语言检测失败，回退到启发式算法", error=str(e))
            return None

        if not results:
            return None
        language, confidence = results[0]
        if confidence <= self.platform_threshold:
            logger.debug(
                "平台检测置信度不足", language=language, confidence=confidence
            )
            return None
        return LanguageVerdict(
            language_code=language.lower(),
            confidence=min(max(confidence, 0.0), 1.0),
            method=DetectionMethod.PLATFORM,
        )

    async def identify(
        self, sample: str, max_sample_chars: int = DEFAULT_SAMPLE_CHARS
    ) -> LanguageVerdict:
        """识别文本样本的语言。只检查前 `max_sample_chars` 个字符。"""
        text = (sample or "")[:max_sample_chars]
        if not text.strip():
            return _unknown()

        verdict = await self._identify_with_platform(text)
        if verdict is None:
            verdict = identify_heuristic(
                text, threshold=self.heuristic_threshold, tie_margin=self.tie_margin
            )
        logger.debug(
            "语言识别完成",
            language=verdict.language_code,
            confidence=round(verdict.confidence, 3),
            method=verdict.method.value,
        )
        return verdict
