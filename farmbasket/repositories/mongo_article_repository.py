# farmbasket/repositories/mongo_article_repository.py

import asyncio
from typing import AsyncIterator, List, Optional

from farmbasket.models.buyer.article_models import Article, ArticleChangeEvent, ArticleMode
from farmbasket.mongo import from_bson, get_col, run_blocking, stream_executor
from farmbasket.repositories.contracts import ArticleRepository

CHANGE_MODES = {
    "insert": ArticleMode.ADDED,
    "update": ArticleMode.CHANGED,
    "replace": ArticleMode.CHANGED,
    "delete": ArticleMode.REMOVED,
}


class MongoArticleRepository(ArticleRepository):
    """
    articles collection: { _id: article id, seller_id, product_id, product_name, unit, price, available, ... }
    Live updates come from a change stream, which needs a replica set; on a
    standalone server the feed ends with RemoteFailure after the snapshot.
    """

    COLLECTION = "articles"

    def __init__(self, timeout: Optional[float] = None, max_await_ms: int = 1000):
        self.timeout = timeout
        self.max_await_ms = max_await_ms

    def _col(self):
        return get_col(self.COLLECTION)

    @staticmethod
    def _from_doc(doc: dict) -> Article:
        data = from_bson(dict(doc))
        data["id"] = str(data.pop("_id"))
        data.pop("seller_id", None)
        return Article.model_validate(data)

    async def load_articles(self, seller_id: str) -> List[Article]:
        def _query():
            return list(self._col().find({"seller_id": seller_id}).sort("product_name", 1))

        docs = await run_blocking(_query, timeout=self.timeout)
        return [self._from_doc(d) for d in docs]

    async def get_articles(self, seller_id: str) -> AsyncIterator[ArticleChangeEvent]:
        for article in await self.load_articles(seller_id):
            yield ArticleChangeEvent(mode=ArticleMode.ADDED, article=article)

        pipeline = [{"$match": {"$or": [
            {"fullDocument.seller_id": seller_id},
            {"operationType": "delete"},
        ]}}]
        stream = await run_blocking(
            self._col().watch,
            pipeline,
            full_document="updateLookup",
            max_await_time_ms=self.max_await_ms,
            pool=stream_executor,
        )
        try:
            while True:
                change = await run_blocking(stream.try_next, pool=stream_executor)
                if change is None:
                    await asyncio.sleep(0)
                    continue

                mode = CHANGE_MODES.get(change.get("operationType"))
                if mode is None:
                    continue

                if mode == ArticleMode.REMOVED:
                    article = Article(id=str(change["documentKey"]["_id"]))
                else:
                    full = change.get("fullDocument")
                    if not full:
                        continue
                    article = self._from_doc(full)

                yield ArticleChangeEvent(mode=mode, article=article)
        finally:
            stream.close()
