from pydantic import BaseModel, ConfigDict
from typing import Optional, List


class ProductStoreData(BaseModel):
    slug: Optional[str] = None
    custom_domain: Optional[str] = None
    custom_domain_verified: bool = False


class ProductImageData(BaseModel):
    image_url: str
    display_order: int = 0
    is_primary: bool = False


class ProductVariationData(BaseModel):
    name: str
    price_modifier: float = 0


class ProductAttributeValueData(BaseModel):
    name: str = "Attribute"  # attribute name, e.g. "Size"
    value: str = ""
    price_modifier: float = 0


class ProductData(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    name: Optional[str] = None
    price: Optional[float] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    landing_page_url: Optional[str] = None
    store: Optional[ProductStoreData] = None
    images: List[ProductImageData] = []
    variations: List[ProductVariationData] = []
    attributes: List[ProductAttributeValueData] = []

    def store_url(self) -> Optional[str]:
        """
        Public product page on the owner's store, custom domain first
        """
        if self.store is None:
            return self.landing_page_url
        if self.store.custom_domain_verified and self.store.custom_domain:
            return f"https://{self.store.custom_domain}/product/{self.id}"
        if self.store.slug:
            return f"https://{self.store.slug}.lovable.app/product/{self.id}"
        return self.landing_page_url

    def gallery(self, limit: int) -> List[str]:
        """Image urls, primary image first, then by display order"""
        ordered = sorted(self.images, key=lambda image: (not image.is_primary, image.display_order))
        return [image.image_url for image in ordered[:limit]]
