from typing import Callable, Iterable, Iterator

from adapters.base import OperatingContext, ProductRef, StorageClass
from adapters.fields import first_of, nested_list, string_map
from core.logger import logger


def classify_product(display_name: str, extra_specs: dict[str, str]) -> StorageClass:
    """Guess the storage class of a volume type.

    This is a heuristic, not provider truth: the control plane publishes no
    media type, so any mention of "ssd" in the type name or in a string-valued
    extra spec is taken to mean SSD, and everything else is assumed HDD.
    """
    if "ssd" in display_name.lower():
        return StorageClass.SSD
    for value in extra_specs.values():
        if isinstance(value, str) and "ssd" in value.lower():
            return StorageClass.SSD
    return StorageClass.HDD


class ProductCatalog:
    """Immutable set of volume types offered in one tenant/region scope."""

    def __init__(self, products: Iterable[ProductRef] = ()) -> None:
        self._products: tuple[ProductRef, ...] = tuple(products)

    def __iter__(self) -> Iterator[ProductRef]:
        return iter(self._products)

    def __len__(self) -> int:
        return len(self._products)

    def resolve(self, requested: str | None) -> ProductRef | None:
        """Find a product by id, falling back to its display name.

        Some providers echo the type's name where its id was expected, hence
        the second pass. No match returns None and the caller keeps the
        requested value as-is.
        """
        if not requested:
            return None
        for product in self._products:
            if product.product_id == requested:
                return product
        for product in self._products:
            if product.display_name == requested:
                return product
        return None

    @classmethod
    def from_response(cls, payload: dict | None) -> "ProductCatalog":
        if not payload:
            return cls()

        products: list[ProductRef] = []
        for entry in nested_list(payload, "volume_types"):
            product_id = first_of(entry, ("id",))
            name       = first_of(entry, ("name",))
            if product_id is None or name is None:
                logger.debug(f"[products] Skipping volume type without id/name: {entry!r}")
                continue
            specs = string_map(entry, "extra_specs", strict=False)
            products.append(ProductRef(
                product_id=product_id,
                display_name=name,
                classification=classify_product(name, specs),
                extra_specs=specs,
            ))
        return cls(products)


def resolve(requested: str | None, catalog: ProductCatalog) -> ProductRef | None:
    return catalog.resolve(requested)


class ProductCache:
    """Catalogs keyed by (tenant, region).

    A miss rebuilds the whole catalog. Concurrent misses may each rebuild;
    rebuilds are idempotent, so no lock is taken around population.
    """

    def __init__(self) -> None:
        self._catalogs: dict[tuple[str, str], ProductCatalog] = {}

    def get(self, context: OperatingContext, build: Callable[[], ProductCatalog]) -> ProductCatalog:
        key = (context.tenant_id, context.region_id)
        catalog = self._catalogs.get(key)
        if catalog is None:
            catalog = build()
            self._catalogs[key] = catalog
            logger.info(f"[products] Cached {len(catalog)} volume type(s) for {key[0] or '-'}/{key[1]}.")
        return catalog

    def clear(self) -> None:
        self._catalogs.clear()
