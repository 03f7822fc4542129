from typing import Optional

from cloudflare._base_client import PageInfo
from cloudflare.pagination import AsyncV4PagePaginationArray


def _bounded_next_page_info(self) -> Optional[PageInfo]:
    info = self.result_info
    if info is None or info.page is None:
        return None

    # Stop once the last page has been served, the stock version keeps asking
    if info.total_pages is not None and info.page >= info.total_pages:
        return None

    return PageInfo(params={"page": info.page + 1})


AsyncV4PagePaginationArray.next_page_info = _bounded_next_page_info
