"""Markdown rendering of a TieredRetrievalResult for LLM consumption."""

from datetime import datetime

from lorekit.types import SearchResult, TieredRetrievalResult, UsageBoostedResult


def _format_date(value: str) -> str:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%Y-%m-%d")
    except (ValueError, AttributeError):
        return value or "unknown"


def _similarity_label(result: SearchResult) -> str:
    if result.unranked:
        return "n/a (recent item)"
    score = result.boosted_similarity if isinstance(result, UsageBoostedResult) else result.similarity
    return f"{score * 100:.1f}%"


def format_retrieval_report(result: TieredRetrievalResult) -> str:
    """
    Render project context, the final items, and a metadata footer.

    Layout:
        ## Project Context (Tier 1)      (only if Tier 1 ran)
        ## Relevant Knowledge Items      (or ## No Results Found)
        ---
        **Metadata:** counts, tokens, budget, diversity
    """
    parts: list[str] = []

    if result.tier1:
        fp = result.tier1.fingerprint
        parts.append("## Project Context (Tier 1)\n")
        parts.append(f"**Project:** {fp.project or 'All Projects'}")
        parts.append(f"**Total Items:** {fp.total_items}")

        if fp.category_counts:
            parts.append("**Distribution:**")
            for category, count in fp.category_counts.items():
                parts.append(f"  - {category}: {count}")

        if result.tier1.recent_wins:
            parts.append("\n**Recent Wins:**")
            for i, win in enumerate(result.tier1.recent_wins, 1):
                parts.append(f"{i}. {win.summary}")
                parts.append(f"   Created: {_format_date(win.created_at)}")

        parts.append(f"\n_Tier 1 Tokens: {result.tier1.token_count}_\n")

    if result.final_results:
        parts.append("## Relevant Knowledge Items\n")
        for i, entry in enumerate(result.final_results, 1):
            item = entry.item
            parts.append(f"### {i}. {item.summary}")
            parts.append(f"**ID:** {item.id}")
            parts.append(f"**Type:** {item.category.value}")
            parts.append(f"**Project:** {item.project}")
            parts.append(f"**File Context:** {item.file_context}")
            parts.append(f"**Similarity:** {_similarity_label(entry)}")
            if item.tags:
                parts.append(f"**Tags:** {', '.join(item.tags)}")

            parts.append(f"\n{item.content}")

            if item.decision_rationale:
                parts.append(f"\n**Decision Rationale:** {item.decision_rationale}")
            if item.alternatives_considered:
                parts.append("\n**Alternatives Considered:**")
                for j, alt in enumerate(item.alternatives_considered, 1):
                    parts.append(f"  {j}. {alt}")
            parts.append("")
    else:
        parts.append("## No Results Found\n")
        parts.append("No knowledge items matched your query.")

    parts.append("\n---\n")
    parts.append("**Metadata:**")
    parts.append(f"- Total Results: {len(result.final_results)}")
    parts.append(f"- Total Tokens: {result.total_tokens:,}")
    parts.append(f"- Budget Enforced: {'Yes' if result.budget_enforced else 'No'}")
    parts.append(f"- Diversity Score: {result.diversity_score * 100:.1f}%")

    return "\n".join(parts)
