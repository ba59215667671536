"""
Cleaned HTML snapshots of the live page.
"""

from playwright.async_api import Page

from browserflow.core.interfaces import HtmlSnapshotProvider
from browserflow.monitoring.logger import get_logger

logger = get_logger(__name__)

# Open shadow roots are copied into <template data-shadowroot="open"> children.
CLEAN_HTML_SCRIPT = """
(withShadow) => {
    const stripUseless = (root) => {
        root.querySelectorAll('script, style, svg, link, noscript').forEach((node) => node.remove());
    };

    const cloneWithShadow = (root) => {
        const clone = root.cloneNode(true);
        const walkerOrig = document.createTreeWalker(root, NodeFilter.SHOW_ELEMENT);
        const walkerClone = document.createTreeWalker(clone, NodeFilter.SHOW_ELEMENT);
        while (walkerOrig.nextNode() && walkerClone.nextNode()) {
            const orig = walkerOrig.currentNode;
            if (orig.shadowRoot) {
                const template = document.createElement('template');
                template.setAttribute('data-shadowroot', 'open');
                template.innerHTML = orig.shadowRoot.innerHTML;
                walkerClone.currentNode.appendChild(template);
            }
        }
        return clone;
    };

    const clone = withShadow
        ? cloneWithShadow(document.documentElement)
        : document.documentElement.cloneNode(true);
    stripUseless(clone);
    return clone.outerHTML;
}
"""


class PageSnapshotProvider(HtmlSnapshotProvider):
    """Captures the page without scripts, styles and other noise."""

    def __init__(self, page: Page) -> None:
        self.page = page

    async def snapshot(self, include_shadow_dom: bool = True) -> str:
        html = await self.page.evaluate(CLEAN_HTML_SCRIPT, bool(include_shadow_dom))
        logger.debug(
            "Captured page snapshot",
            extra={"size": len(html or ""), "shadow_dom": include_shadow_dom},
        )
        return html or ""
