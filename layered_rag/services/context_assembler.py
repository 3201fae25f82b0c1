"""
上下文组装

将排好序的检索结果组装成有长度上限的上下文字符串和引用列表。

规则：
- 去重：同一 chunk_id、同一文档同一位置、同一文档相同文本，只保留排名最高的一条
- 每个文档最多 per_document_cap 个片段，总数最多 max_results 个
- 按排名顺序拼接；超出字符预算时从排名最低的片段开始丢弃，
  只剩一个片段仍超出时截断到预算长度
- 引用按文档首次出现的顺序排列，分数取该文档被采用片段的最高分
"""

from dataclasses import dataclass, field

from layered_rag.infra.vector_store import VectorRecord

DEFAULT_DELIMITER = "\n\n---\n\n"


@dataclass(frozen=True)
class Citation:
    """引用来源（每个文档一条）"""
    document_id: str
    title: str
    layer: str
    score: float


@dataclass
class AssembledContext:
    """组装结果；没有可用片段时 context 为空字符串"""
    context: str = ""
    citations: list[Citation] = field(default_factory=list)
    chunks: list[VectorRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.context


def deduplicate(hits: list[VectorRecord]) -> list[VectorRecord]:
    """去除重复片段，保留排名靠前的一条"""
    seen_ids: set[str] = set()
    seen_positions: set[tuple[str, int]] = set()
    seen_texts: set[tuple[str, str]] = set()
    unique = []
    for hit in hits:
        text_key = (hit.document_id, hit.text.strip())
        position_key = (hit.document_id, hit.position)
        if hit.chunk_id in seen_ids or position_key in seen_positions or text_key in seen_texts:
            continue
        seen_ids.add(hit.chunk_id)
        seen_positions.add(position_key)
        seen_texts.add(text_key)
        unique.append(hit)
    return unique


def _select(hits: list[VectorRecord], per_document_cap: int, max_results: int) -> list[VectorRecord]:
    per_doc: dict[str, int] = {}
    selected = []
    for hit in hits:
        if len(selected) >= max_results:
            break
        if per_doc.get(hit.document_id, 0) >= per_document_cap:
            continue
        per_doc[hit.document_id] = per_doc.get(hit.document_id, 0) + 1
        selected.append(hit)
    return selected


def _build_citations(chunks: list[VectorRecord]) -> list[Citation]:
    order: list[str] = []
    best: dict[str, VectorRecord] = {}
    for chunk in chunks:
        if chunk.document_id not in best:
            order.append(chunk.document_id)
            best[chunk.document_id] = chunk
        elif chunk.score > best[chunk.document_id].score:
            best[chunk.document_id] = chunk
    return [
        Citation(
            document_id=doc_id,
            title=best[doc_id].title,
            layer=best[doc_id].layer,
            score=best[doc_id].score,
        )
        for doc_id in order
    ]


def _render(chunks: list[VectorRecord], delimiter: str) -> str:
    # 片段标号使用文档的引用序号，方便回答中按 [n] 引用
    numbers: dict[str, int] = {}
    blocks = []
    for chunk in chunks:
        number = numbers.setdefault(chunk.document_id, len(numbers) + 1)
        blocks.append(f"[{number}] {chunk.title}\n{chunk.text}")
    return delimiter.join(blocks)


def assemble_context(
    hits: list[VectorRecord],
    *,
    budget_chars: int,
    per_document_cap: int = 2,
    max_results: int = 5,
    delimiter: str = DEFAULT_DELIMITER,
) -> AssembledContext:
    """
    组装上下文

    Args:
        hits: 已按排名排序的检索结果
        budget_chars: 上下文字符预算
        per_document_cap: 每个文档最多采用的片段数
        max_results: 最多采用的片段数
        delimiter: 片段分隔符

    Returns:
        AssembledContext
    """
    if budget_chars <= 0:
        raise ValueError(f"上下文字符预算必须为正数: {budget_chars}")
    if per_document_cap <= 0 or max_results <= 0:
        return AssembledContext()

    selected = _select(deduplicate(hits), per_document_cap, max_results)
    if not selected:
        return AssembledContext()

    context = _render(selected, delimiter)
    while len(context) > budget_chars and len(selected) > 1:
        selected = selected[:-1]
        context = _render(selected, delimiter)

    if len(context) > budget_chars:
        context = context[:budget_chars]

    return AssembledContext(
        context=context,
        citations=_build_citations(selected),
        chunks=selected,
    )
