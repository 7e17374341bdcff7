"""GraphQL documents for the Shopify Admin API."""

QUERY_SHOP_PROFILE = """
query ShopProfile {
  shop {
    ianaTimezone
    currencyCode
  }
}
"""

QUERY_ORDERS_PAGE = """
query OrdersPage($first: Int!, $after: String, $query: String!) {
  orders(first: $first, after: $after, query: $query) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        legacyResourceId
        createdAt
        test
        cancelledAt
        totalPriceSet { shopMoney { amount currencyCode } }
        subtotalPriceSet { shopMoney { amount currencyCode } }
        totalDiscountsSet { shopMoney { amount currencyCode } }
        totalTaxSet { shopMoney { amount currencyCode } }
        paymentGatewayNames
        lineItems(first: 250) {
          edges {
            node {
              id
              quantity
              originalUnitPriceSet { shopMoney { amount currencyCode } }
              discountedUnitPriceSet { shopMoney { amount currencyCode } }
              taxLines {
                priceSet { shopMoney { amount currencyCode } }
                title
                rate
              }
            }
          }
        }
        refunds(first: 100) {
          id
          createdAt
          refundLineItems(first: 250) {
            edges {
              node {
                id
                quantity
                subtotalSet { shopMoney { amount currencyCode } }
                totalTaxSet { shopMoney { amount currencyCode } }
              }
            }
          }
          refundShippingLines(first: 100) {
            edges {
              node {
                id
                subtotalAmountSet { shopMoney { amount currencyCode } }
                taxAmountSet { shopMoney { amount currencyCode } }
              }
            }
          }
          orderAdjustments(first: 100) {
            edges {
              node {
                id
                amountSet { shopMoney { amount currencyCode } }
                reason
              }
            }
          }
        }
      }
    }
  }
}
"""
