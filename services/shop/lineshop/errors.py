"""
Shop Service — エラー定義

すべての業務エラーは ShopError を継承する。
kind はクライアント向けの安定した識別子、status_code は HTTP への対応付け。
"""


class ShopError(Exception):
    """業務エラーの基底クラス"""

    kind = "Error"
    status_code = 400
    default_message = "操作に失敗しました"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(ShopError):
    kind = "NotFound"
    status_code = 404
    default_message = "見つかりません"


class ShopNotFound(NotFound):
    default_message = "ショップが見つかりません"


class ProductNotFound(NotFound):
    default_message = "商品が見つかりません"


class OrderNotFound(NotFound):
    default_message = "注文が見つかりません"


class Forbidden(ShopError):
    kind = "Forbidden"
    status_code = 403
    default_message = "この注文にアクセスできません"


class InvalidState(ShopError):
    kind = "InvalidState"
    status_code = 409
    default_message = "pending の注文のみ操作できます"


class MissingProductReference(ShopError):
    kind = "MissingProductReference"
    status_code = 409
    default_message = "注文の商品情報が不正です"


class InvalidQuantity(ShopError):
    kind = "InvalidQuantity"
    default_message = "数量を1以上に指定してください"


class OutOfStock(ShopError):
    kind = "OutOfStock"
    status_code = 409
    default_message = "在庫がありません"


class InsufficientInventory(ShopError):
    """在庫不足。事前チェックでもトランザクション内の競合でも同じ種別になる。"""

    kind = "InsufficientInventory"
    status_code = 409
    default_message = "在庫が不足しています"


class ProductArchived(ShopError):
    kind = "ProductArchived"
    default_message = "販売停止中の商品です"


class ShopClosed(ShopError):
    kind = "ShopClosed"
    status_code = 403
    default_message = "現在このショップは購入できません"


class DailyLimitExceeded(ShopError):
    kind = "DailyLimitExceeded"
    status_code = 429
    default_message = "1日の購入上限に達しました"


class Unauthorized(ShopError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "認証に失敗しました"


class InvalidInput(ShopError):
    kind = "InvalidInput"
    default_message = "入力内容が不正です"
