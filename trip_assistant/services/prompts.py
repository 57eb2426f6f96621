"""
Prompt templates sent to the completion provider

The recommendation template is a fixed contract with the streaming parser:
every catalog item is listed with its id, markers must use the exact
``[PRODUCT:<id>]`` grammar on their own line between blank lines and are
never split, and no reasoning trace may be shown. Wording may change; those
rules may not.
"""
import re
from typing import List, Optional

from trip_assistant.models.catalog import TravelProduct

CLASSIFICATION_PROMPT = (
    'please judge whether the following sentence is about Japan tourism: {query}, '
    'only answer "yes" or "no"'
)

BUDGET_PATTERN = re.compile(r"(\d+)元|(\d+)块|预算.*?(\d+)")

PRODUCT_ENTRY_TEMPLATE = """
{index}. {name}
   - Price: ¥{price}
   - Duration: {duration}
   - Tags: {tags}
   - Product ID: {id}
   - Recommendation: {recommendation}
   - Description: {description}
"""

DATASET_TEMPLATE = """
## Company Tourism Product Dataset

Our company provides the following {count} Tokyo tourism products:

{products}

User Budget: {budget}
User Request: {query}
"""

RECOMMENDATION_TEMPLATE = """You are a professional Tokyo tourism recommendation assistant. You can plan comprehensive Tokyo travel itineraries including various attractions, but please reference the dataset below when our company has relevant products:

{dataset}

**IMPORTANT: Please output the final recommendation results directly, without showing any thinking process, analysis process, or reasoning steps.**

【GUIDANCE PRINCIPLES】
1. You can recommend ANY Tokyo attractions, restaurants, activities, and experiences to create a comprehensive travel plan
2. When mentioning attractions/activities that match our company's products in the dataset, you MUST include the corresponding [PRODUCT:ProductID] tag
3. For attractions/activities NOT covered by our products, provide general recommendations WITHOUT product tags
4. Only use [PRODUCT:ProductID] tags for products that actually exist in our dataset
5. Filter recommendations based on user budget - if our products exceed budget, you can still mention the attraction but note the budget constraint
6. Use markdown format with clear structure

【PRODUCT INTEGRATION RULES】
7. Review each attraction/activity you recommend against our product dataset
8. If we have a matching product (same location/activity), include the [PRODUCT:ProductID] tag
9. If we don't have a matching product, provide general advice (how to get there, general pricing, tips, etc.)
10. Make the integration natural - don't force our products where they don't fit

【CRITICAL TECHNICAL REQUIREMENTS - STREAMING OUTPUT COMPATIBILITY】
11. When outputting product tags [PRODUCT:ProductID], they must be output as a complete unit and cannot be split
12. Add line breaks before and after product tags to ensure independence
13. Product IDs must be complete, with strict format: [PRODUCT:ProductID] where ProductID uses only letters, digits, "-" and "_"
14. If outputting multiple products, each product tag must be output completely without interruption

Please analyze the user request "{query}" and design a comprehensive Tokyo travel plan. Include our company's products where relevant, but also provide complete travel guidance for other attractions.

IMPORTANT REMINDERS:
- Each [PRODUCT:ProductID] must be on its own line
- There must be blank lines before and after product IDs
- Product tags cannot be split and must be output completely
- Strictly use product IDs from the dataset

Example format (showing how to mix our products with general recommendations):

## 三日游行程安排：

### 第一天：东京市区观光
- 上午：抵达羽田机场后，建议选择我们的机场接送服务

[PRODUCT:LINKTIVITY-2IV2I]

- 下午：前往东京晴空塔，推荐超值套票

[PRODUCT:LINKTIVITY-3PWVV]

- 晚上：前往涩谷十字路口体验东京夜景，可在附近的餐厅用餐（建议预算：¥3000-5000）

### 第二天：传统文化体验
- 上午：参观浅草寺，体验传统日本文化（免费参观，地铁：¥200）
- 下午：在仲见世通购买传统手工艺品和小吃
- 晚上：欣赏忍者&歌舞伎表演

[PRODUCT:Ninja-Kabuki-Tokyo]

总预算：约¥xxxx（包含我们的产品 + 其他活动估算费用）

Please start your recommendations:"""


def build_classification_prompt(query: str) -> str:
    return CLASSIFICATION_PROMPT.format(query=query)


def extract_budget(text: str) -> Optional[int]:
    """
    Best-effort budget scan: first "<n>元", "<n>块" or "预算 ... <n>".
    No currency validation.
    """
    match = BUDGET_PATTERN.search(text)
    if not match:
        return None
    value = match.group(1) or match.group(2) or match.group(3)
    return int(value)


def _format_price(price: float) -> str:
    return str(int(price)) if float(price).is_integer() else str(price)


def build_dataset(products: List[TravelProduct], budget: Optional[int], query: str) -> str:
    """Grounding document enumerating the catalog"""
    entries = "\n".join(
        PRODUCT_ENTRY_TEMPLATE.format(
            index=index,
            name=product.name,
            price=_format_price(product.price),
            duration=product.duration,
            tags=", ".join(product.tags),
            id=product.id,
            recommendation=product.recommendation,
            description=product.description,
        )
        for index, product in enumerate(products, start=1)
    )
    return DATASET_TEMPLATE.format(
        count=len(products),
        products=entries,
        budget=f"¥{budget}" if budget is not None else "Not specified",
        query=query,
    )


def build_recommendation_prompt(products: List[TravelProduct], budget: Optional[int], query: str) -> str:
    """Single instruction sent to the completion provider for one turn"""
    return RECOMMENDATION_TEMPLATE.format(
        dataset=build_dataset(products, budget, query),
        query=query,
    )
